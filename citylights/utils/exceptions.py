"""Custom exceptions for the City Lights client"""

from typing import Optional


class CityLightsError(Exception):
    """Base exception for City Lights"""
    pass


class ValidationError(CityLightsError):
    """Local input validation failed before any request was made"""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        self.message = message
        super().__init__(message)


class ApiError(CityLightsError):
    """Error reported by the City Lights API"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(ApiError):
    """Invalid credentials, invalid or expired code"""
    pass


class SessionExpiredError(ApiError):
    """Authenticated request rejected with 401; the stored session was cleared"""

    def __init__(self, message: str = "Session expired"):
        super().__init__(message, status_code=401)


class TransportError(CityLightsError):
    """Network unreachable or request timed out"""
    pass


class LoginFailedError(CityLightsError):
    """Login attempt failed (bad credentials, transport error or malformed response)"""
    pass


class ConfigError(CityLightsError):
    """Configuration error"""
    pass
