import logging
import threading
from typing import Any, Dict, Optional

import httpx

from src.client.errors import normalize_error
from src.client.session import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080/api"
DEFAULT_TIMEOUT = 10.0
REFRESH_PATH = "/auth/refresh"

# No refresh-and-retry for these; a 401 here means bad credentials
AUTH_PATHS = ("/auth/signin", "/auth/refresh", "/auth/register", "/auth/signout")


class ApiClient:
    """HTTP client for the API.

    Sends the bearer token from the session, unwraps the response envelope and
    raises AppError for every failure. A 401 on a protected endpoint triggers a
    single refresh (shared by concurrent callers) and one retry.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[SessionStore] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.session = session or SessionStore()
        self._http = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)
        self._refresh_lock = threading.Lock()

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.session.access_token:
            headers["Authorization"] = f"Bearer {self.session.access_token}"
        return headers

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self._http.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise normalize_error(e) from e

    def _refresh(self, stale_token: Optional[str]) -> bool:
        """Rotate tokens once; callers that waited on the lock reuse the new token"""
        with self._refresh_lock:
            if self.session.access_token and self.session.access_token != stale_token:
                return True
            refresh_token = self.session.refresh_token
            if not refresh_token:
                return False
            try:
                response = self._http.post(REFRESH_PATH, json={"refresh_token": refresh_token})
            except httpx.HTTPError:
                logger.warning("token refresh request failed", exc_info=True)
                return False
            if response.status_code != 200:
                return False
            self.session.set_tokens(self._unwrap(response))
            return True

    @staticmethod
    def _unwrap(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            return response.content
        body = response.json()
        if isinstance(body, dict) and "success" in body:
            return body.get("data")
        return body

    def request(self, method: str, path: str, **kwargs) -> Any:
        token = self.session.access_token
        response = self._send(method, path, **kwargs)

        if response.status_code == 401 and not path.startswith(AUTH_PATHS):
            original = normalize_error(response)
            if not self._refresh(token):
                self.session.clear()
                raise original
            response = self._send(method, path, **kwargs)

        if response.is_error:
            raise normalize_error(response)
        return self._unwrap(response)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=_clean(params))

    def post(self, path: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("POST", path, json=json, params=_clean(params))

    def put(self, path: str, json: Any = None) -> Any:
        return self.request("PUT", path, json=json)

    def patch(self, path: str, json: Any = None) -> Any:
        return self.request("PATCH", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)


def _clean(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if params is None:
        return None
    return {k: v for k, v in params.items() if v is not None}
