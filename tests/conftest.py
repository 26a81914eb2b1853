import threading
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest

from citylights.api.auth_client import AuthClient
from citylights.models.auth import TwoFactorStatusResponse
from citylights.services.session_store import InMemorySessionStore
from citylights.utils.config import TwoFactorSettings


def make_user_payload(**overrides) -> Dict[str, Any]:
    payload = {
        "id": "u-1",
        "name": "Ana Torres",
        "email": "ana@citylights.test",
        "emailVerified": True,
        "twoFactorEnabled": True,
        "roleName": "admin",
    }
    payload.update(overrides)
    return payload


def status(value: str, **extra) -> TwoFactorStatusResponse:
    return TwoFactorStatusResponse(status=value, **extra)


class Recorder:
    """Collects poller callbacks and signals when a terminal one arrives"""

    def __init__(self):
        self.events: List[tuple] = []
        self.errors: List[str] = []
        self.done = threading.Event()
        self._lock = threading.Lock()

    def terminal(self, name: str):
        def callback(result):
            with self._lock:
                self.events.append((name, result))
            self.done.set()
        return callback

    def error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    def callbacks(self) -> Dict[str, Any]:
        return {
            "on_approved": self.terminal("approved"),
            "on_rejected": self.terminal("rejected"),
            "on_timeout": self.terminal("timeout"),
            "on_aborted": self.terminal("aborted"),
            "on_error": self.error,
        }


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def client():
    return MagicMock(spec=AuthClient)


@pytest.fixture
def fast_settings():
    return TwoFactorSettings(
        poll_interval_seconds=0.01,
        poll_timeout_seconds=2.0,
        resend_cooldown_seconds=60,
    )
