import logging
import threading
import time
import uuid
from collections import defaultdict
from typing import Dict, Tuple

from fastapi import FastAPI, Request

from src.common import errors
from src.common.handlers import error_response
from src.common.ip import client_ip
from src.config import settings

logger = logging.getLogger(__name__)


class FixedWindowRateLimiter:
    """Per-key request counter over one-minute windows"""

    def __init__(self, limit: int, window_seconds: int = 60):
        self.limit = limit
        self.window_seconds = window_seconds
        self._lock = threading.Lock()
        self._counters: Dict[str, Tuple[int, int]] = defaultdict(lambda: (0, 0))

    def allow(self, key: str) -> bool:
        if self.limit <= 0:
            return True
        window = int(time.time()) // self.window_seconds
        with self._lock:
            current_window, count = self._counters[key]
            if current_window != window:
                current_window, count = window, 0
            count += 1
            self._counters[key] = (current_window, count)
            if len(self._counters) > 10000:
                self._evict(window)
            return count <= self.limit

    def _evict(self, window: int) -> None:
        stale = [key for key, (w, _) in self._counters.items() if w != window]
        for key in stale:
            del self._counters[key]

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()


rate_limiter = FixedWindowRateLimiter(settings.RATE_LIMIT_PER_MINUTE)


async def request_context_middleware(request: Request, call_next):
    """Attach a request id, enforce the rate limit and log every request"""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    if not rate_limiter.allow(client_ip(request)):
        response = error_response(request, errors.RATE_LIMIT_EXCEEDED())
        response.headers["X-Request-ID"] = request_id
        return response

    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000

    response.headers["X-Request-ID"] = request_id
    logger.info(
        "%s %s -> %s (%.1fms) request_id=%s",
        request.method, request.url.path, response.status_code, duration_ms, request_id,
    )
    return response


def register_middleware(app: FastAPI) -> None:
    app.middleware("http")(request_context_middleware)
