"""City Lights REST API client"""

from typing import Any, Callable, Dict, List, Optional

import requests

from ..services.session_store import SessionStore
from ..utils.exceptions import (
    ApiError,
    AuthenticationError,
    SessionExpiredError,
    TransportError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "http://localhost:4000/api"
TIMEOUT_MESSAGE = "Request timed out. Check your connection."
UNREACHABLE_MESSAGE = "Could not reach the server. Check your internet connection."

# Statuses the API uses for rejected credentials, codes and permissions
AUTH_ERROR_STATUSES = {400, 401, 403}


def extract_error_message(response: requests.Response) -> str:
    """Pull the human-readable message out of an API error body"""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message if m)
        if message:
            return str(message)
        if body.get("error"):
            return str(body["error"])
    return f"Error {response.status_code}: {response.reason or 'Server error'}"


class ApiClient:
    """
    JSON client for the City Lights API.

    Attaches the stored bearer token to authenticated requests and
    destroys the stored session when an authenticated request is
    rejected with 401.
    """

    def __init__(
        self,
        session_store: SessionStore,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        http: Optional[requests.Session] = None,
    ):
        self.session_store = session_store
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = http or requests.Session()
        self.http.headers.update({"Content-Type": "application/json"})
        if user_agent:
            self.http.headers["User-Agent"] = user_agent
        self._expiry_hooks: List[Callable[[], None]] = []

    def on_session_expired(self, hook: Callable[[], None]) -> None:
        """Register a hook run after a 401 has cleared the stored session"""
        self._expiry_hooks.append(hook)

    def _handle_session_expired(self, endpoint: str) -> None:
        logger.warning("Session rejected by API; clearing stored session", endpoint=endpoint)
        self.session_store.clear()
        for hook in list(self._expiry_hooks):
            try:
                hook()
            except Exception as e:
                logger.exception("Session expiry hook failed", error=str(e))

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        """
        Make an HTTP request to the API

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint (without base URL)
            params: Query parameters
            data: JSON request body
            authenticated: Attach the stored token and treat 401 as session expiry

        Returns:
            Decoded JSON body (None for empty responses)

        Raises:
            SessionExpiredError: Authenticated request rejected with 401
            AuthenticationError: Credentials or code rejected (400/401/403)
            ApiError: Any other error status or an undecodable body
            TransportError: Connection failure or timeout
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = {}
        token = self.session_store.get_token() if authenticated else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        logger.debug("Sending API request", method=method, endpoint=endpoint, authenticated=bool(token))
        try:
            response = self.http.request(
                method=method,
                url=url,
                params=params,
                json=data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.error("Request timeout", endpoint=endpoint, timeout=self.timeout, error=str(e))
            raise TransportError(TIMEOUT_MESSAGE) from e
        except requests.exceptions.RequestException as e:
            logger.error("Request failed", endpoint=endpoint, error=str(e))
            raise TransportError(UNREACHABLE_MESSAGE) from e

        logger.debug(
            "Received API response",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
        )

        if response.status_code >= 400:
            message = extract_error_message(response)
            if response.status_code == 401 and token:
                self._handle_session_expired(endpoint)
                raise SessionExpiredError(message)
            if response.status_code in AUTH_ERROR_STATUSES:
                raise AuthenticationError(message, status_code=response.status_code)
            raise ApiError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError("Malformed response from server", status_code=response.status_code) from e

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._make_request("GET", endpoint, params=params)

    def post(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self._make_request("POST", endpoint, data=data)

    def put(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self._make_request("PUT", endpoint, data=data)

    def patch(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self._make_request("PATCH", endpoint, data=data)

    def delete(self, endpoint: str) -> Any:
        return self._make_request("DELETE", endpoint)

    def close(self) -> None:
        self.http.close()
