"""
Durable client storage for the authenticated session.

Two values are kept under fixed keys: the bearer token and the JSON
serialized user record. Both must be present for a session to exist.
"""

import json
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from ..models.auth import Session
from ..models.user import User
from ..utils.logger import get_logger

logger = get_logger(__name__)

TOKEN_KEY = "auth_token"
USER_KEY = "auth_user"


class SessionStore:
    """Key/value storage holding the session; subclasses provide the backing"""

    def _read(self) -> Dict[str, str]:
        raise NotImplementedError

    def _write(self, data: Dict[str, str]) -> None:
        raise NotImplementedError

    def get(self) -> Optional[Session]:
        """Return the stored session, or None when either part is missing or unreadable"""
        data = self._read()
        token = data.get(TOKEN_KEY)
        raw_user = data.get(USER_KEY)
        if not token or not raw_user:
            return None
        try:
            user = User(**json.loads(raw_user))
        except (json.JSONDecodeError, TypeError, PydanticValidationError) as e:
            logger.warning("Stored user record is unreadable; ignoring session", error=str(e))
            return None
        return Session.from_parts(token, user)

    def get_token(self) -> Optional[str]:
        session = self.get()
        return session.token if session else None

    def set(self, session: Session) -> None:
        self._write({
            TOKEN_KEY: session.token,
            USER_KEY: json.dumps(session.user.to_api(), ensure_ascii=False),
        })

    def clear(self) -> None:
        self._write({})


class InMemorySessionStore(SessionStore):
    """Process-local store, used in tests and embedded front-ends"""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(data or {})

    def _read(self) -> Dict[str, str]:
        return dict(self._data)

    def _write(self, data: Dict[str, str]) -> None:
        self._data = dict(data)


class FileSessionStore(SessionStore):
    """JSON file store with atomic writes, survives restarts"""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read session file", path=str(self.path), error=str(e))
            return {}
        return raw if isinstance(raw, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        with self._lock:
            if not data:
                if self.path.exists():
                    self.path.unlink()
                return
            self._atomic_write(data)

    def _atomic_write(self, data: Dict[str, str]) -> None:
        """Write JSON atomically"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w", dir=str(self.path.parent), delete=False, encoding="utf-8"
        ) as tf:
            json.dump(data, tf, indent=2, ensure_ascii=False)
            temp_path = Path(tf.name)
        try:
            shutil.move(str(temp_path), str(self.path))
        except Exception:
            if temp_path.exists():
                temp_path.unlink()
            raise
