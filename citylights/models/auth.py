"""
Authentication models.

Request/response shapes of the /auth endpoints plus the client-side
Session and TwoFactorChallenge records.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .user import User


class Session(BaseModel):
    """Authenticated principal: bearer token plus user record"""
    model_config = ConfigDict(frozen=True)

    token: str
    user: User

    def has_role(self, role: str) -> bool:
        return self.user.role_name == role

    def is_admin(self) -> bool:
        return self.has_role("admin")

    def is_user(self) -> bool:
        return self.has_role("user")

    @classmethod
    def from_parts(cls, token: Optional[str], user: Optional[User]) -> Optional["Session"]:
        """A session exists only when both parts are present"""
        if not token or user is None:
            return None
        return cls(token=token, user=user)


class LoginResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    access_token: Optional[str] = None
    user: Optional[User] = None
    requires_two_factor: bool = Field(default=False, alias="requiresTwoFactor")
    use_push_notification: bool = Field(default=False, alias="usePushNotification")
    request_id: Optional[str] = Field(default=None, alias="requestId")
    message: Optional[str] = None

    def session(self) -> Optional[Session]:
        return Session.from_parts(self.access_token, self.user)


class TwoFactorStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: Literal["pending", "approved", "rejected"]
    approved: Optional[bool] = None
    message: Optional[str] = None
    access_token: Optional[str] = None
    user: Optional[User] = None

    def session(self) -> Optional[Session]:
        return Session.from_parts(self.access_token, self.user)


class RegisterResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    message: str
    user_id: str = Field(alias="userId")
    email: str


class VerifyEmailResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str
    user: User


class ChallengeKind(str, Enum):
    """How the second factor is delivered"""
    EMAIL_CODE = "email-code"
    PUSH_APPROVAL = "push-approval"


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class TwoFactorChallenge(BaseModel):
    """One in-flight second-factor verification"""
    model_config = ConfigDict(frozen=True)

    kind: ChallengeKind
    email: str
    request_id: Optional[str] = None
    message: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: ChallengeStatus = ChallengeStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status != ChallengeStatus.PENDING

    def resolve(self, status: ChallengeStatus) -> "TwoFactorChallenge":
        """Return a copy moved to a terminal status; terminal challenges never move again"""
        if self.is_terminal or status == ChallengeStatus.PENDING:
            return self
        return self.model_copy(update={"status": status})
