import threading
from typing import Any, Callable, Dict, Optional

from src.client.errors import AppError, normalize_error


class SessionStore:
    """In-memory tokens and profile of the signed-in user"""

    def __init__(self):
        self._lock = threading.Lock()
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.expires_at: Optional[str] = None
        self.user: Optional[Dict[str, Any]] = None

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    def set_tokens(self, tokens: Dict[str, Any]) -> None:
        with self._lock:
            self.access_token = tokens.get("access_token")
            self.refresh_token = tokens.get("refresh_token")
            self.expires_at = tokens.get("expires_at")

    def set_user(self, user: Dict[str, Any]) -> None:
        """Store a profile; a profile carrying tokens also signs in"""
        profile = dict(user)
        auth = profile.pop("auth", None)
        if auth:
            self.set_tokens(auth)
        with self._lock:
            self.user = profile

    def clear(self) -> None:
        with self._lock:
            self.access_token = None
            self.refresh_token = None
            self.expires_at = None
            self.user = None


class ResponseStore:
    """Last successful response of a call; an error clears it"""

    def __init__(self):
        self.data: Any = None
        self.error: Optional[AppError] = None

    def fetch(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            self.data = None
            self.error = normalize_error(e)
            raise self.error from e
        self.data = result
        self.error = None
        return result

    def clear(self) -> None:
        self.data = None
        self.error = None
