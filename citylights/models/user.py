"""User data models as returned by the City Lights API"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(BaseModel):
    """Role attached to a user"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: str
    description: str = ""
    categoria: Literal["superusuario", "trabajador", "residente"]


class User(BaseModel):
    """Authenticated user record; unknown server fields are kept"""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: str
    email: str
    telephone: Optional[str] = None
    email_verified: bool = Field(default=False, alias="emailVerified")
    two_factor_enabled: bool = Field(default=False, alias="twoFactorEnabled")
    role_name: str = Field(default="user", alias="roleName")
    role: Optional[Role] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    def to_api(self) -> dict:
        """Serialize with the API's field names"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
