"""Client for the /auth endpoints"""

from typing import Any, Dict

from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..models.auth import (
    LoginResponse,
    RegisterResponse,
    TwoFactorStatusResponse,
    VerifyEmailResponse,
)
from ..models.user import User
from ..utils.exceptions import ApiError, TransportError
from .client import ApiClient


def _parse(model, payload: Any, endpoint: str):
    if not isinstance(payload, dict):
        raise ApiError(f"Malformed response from {endpoint}")
    try:
        return model(**payload)
    except PydanticValidationError as e:
        raise ApiError(f"Malformed response from {endpoint}: {e.error_count()} invalid field(s)") from e


class AuthClient(ApiClient):
    """
    Authentication API.

    None of these calls touch the session store; persisting a session
    is left to the login coordinator.
    """

    def login(self, email: str, password: str) -> LoginResponse:
        payload = self._make_request(
            "POST", "/auth/login",
            data={"email": email, "password": password},
            authenticated=False,
        )
        return _parse(LoginResponse, payload, "/auth/login")

    def verify_2fa(self, email: str, code: str) -> LoginResponse:
        payload = self._make_request(
            "POST", "/auth/verify-2fa",
            data={"email": email, "code": code},
            authenticated=False,
        )
        return _parse(LoginResponse, payload, "/auth/verify-2fa")

    def check_2fa_status(self, email: str, request_id: str) -> TwoFactorStatusResponse:
        payload = self._make_request(
            "POST", "/auth/check-2fa-status",
            data={"email": email, "requestId": request_id},
            authenticated=False,
        )
        return _parse(TwoFactorStatusResponse, payload, "/auth/check-2fa-status")

    def resend_code(self, email: str) -> Dict[str, Any]:
        payload = self._make_request(
            "POST", "/auth/resend-code",
            data={"email": email},
            authenticated=False,
        )
        return payload or {}

    def register(self, name: str, email: str, password: str, telephone: str) -> RegisterResponse:
        payload = self._make_request(
            "POST", "/auth/register",
            data={"name": name, "email": email, "password": password, "telephone": telephone},
            authenticated=False,
        )
        return _parse(RegisterResponse, payload, "/auth/register")

    def verify_email(self, email: str, code: str) -> VerifyEmailResponse:
        payload = self._make_request(
            "POST", "/auth/verify-email",
            data={"email": email, "code": code},
            authenticated=False,
        )
        return _parse(VerifyEmailResponse, payload, "/auth/verify-email")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type(TransportError),
        reraise=True,
    )
    def get_profile(self) -> User:
        """Fetch the current user; retried on transport errors only"""
        payload = self._make_request("GET", "/auth/profile")
        if not isinstance(payload, dict) or "user" not in payload:
            raise ApiError("Malformed response from /auth/profile")
        return _parse(User, payload["user"], "/auth/profile")
