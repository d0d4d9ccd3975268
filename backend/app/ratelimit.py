"""Per-client-IP request limiting.

Fixed window counter: the first request from an IP opens a window of
``window_seconds``; at most ``max_requests`` requests are accepted inside
it.  State is in-memory and per process.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Sequence, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from app.config import RateLimitSettings

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    started_at: float
    count: int = 0


class RateLimiter:
    """Counts requests per key in fixed windows."""

    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window_seconds = window_seconds
        self._max_requests = max_requests
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def hit(self, key: str) -> Tuple[bool, float]:
        """Count one request for *key*.

        Returns:
            (allowed, seconds until the key's window resets)
        """
        now = self._clock()
        self._evict(now)
        window = self._windows.get(key)
        if window is None:
            window = self._windows[key] = _Window(started_at=now)
        window.count += 1
        retry_after = window.started_at + self._window_seconds - now
        return window.count <= self._max_requests, retry_after

    def reset(self) -> None:
        self._windows.clear()

    def _evict(self, now: float) -> None:
        expired = [
            k for k, w in self._windows.items()
            if now - w.started_at >= self._window_seconds
        ]
        for k in expired:
            del self._windows[k]


def install_rate_limit(
    app: FastAPI,
    settings: RateLimitSettings,
    exempt_prefixes: Sequence[str] = ("/uploads/",),
) -> RateLimiter:
    """Register the limiter as HTTP middleware on *app*."""
    limiter = RateLimiter(settings.window_seconds, settings.max_requests)

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if not settings.enabled or request.url.path.startswith(tuple(exempt_prefixes)):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        allowed, retry_after = limiter.hit(client_ip)
        if not allowed:
            logger.warning("Rate limit exceeded for %s on %s", client_ip, request.url.path)
            return PlainTextResponse(
                settings.message,
                status_code=429,
                headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
            )
        return await call_next(request)

    return limiter
