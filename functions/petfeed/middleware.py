"""
HTTP middleware: baseline security headers and per-client rate limits.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Dict, Optional, Sequence, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    # Images are embedded by the frontend from other origins.
    "Cross-Origin-Resource-Policy": "cross-origin",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


class FixedWindowLimiter:
    """
    Counts hits per client key in fixed windows of ``window_seconds``.

    A limit of 0 (or a non-positive window) disables the limiter.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.limit > 0 and self.window_seconds > 0

    def hit(self, key: str) -> Optional[int]:
        """
        Record one request for ``key``.

        Returns None when the request is allowed, otherwise the number of
        seconds until the client's window resets.
        """
        if not self.enabled:
            return None
        now = self._clock()
        with self._lock:
            self._prune(now)
            started, count = self._windows.get(key, (now, 0))
            if count >= self.limit:
                return max(1, math.ceil(started + self.window_seconds - now))
            self._windows[key] = (started, count + 1)
        return None

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]


def client_key(request: Request) -> str:
    # One trusted proxy hop: the last X-Forwarded-For entry is the client.
    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    if hops:
        return hops[-1]
    if request.client:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies ``limiter`` to every request and each ``(method, path, limiter)``
    rule to matching requests. Rejected requests get a 429.
    """

    def __init__(
        self,
        app,
        limiter: FixedWindowLimiter,
        rules: Sequence[Tuple[str, str, FixedWindowLimiter]] = (),
    ):
        super().__init__(app)
        self.limiter = limiter
        self.rules = list(rules)

    async def dispatch(self, request: Request, call_next):
        key = client_key(request)
        path = request.url.path.rstrip("/") or "/"
        limiters = [self.limiter]
        limiters.extend(
            limiter
            for method, rule_path, limiter in self.rules
            if request.method == method and path == rule_path
        )
        for limiter in limiters:
            retry_after = limiter.hit(key)
            if retry_after is not None:
                logger.warning(
                    "Rate limit hit by %s on %s %s", key, request.method, path
                )
                return JSONResponse(
                    {"error": "Too many requests, please try again later."},
                    status_code=429,
                    headers={"Retry-After": str(retry_after)},
                )
        return await call_next(request)
