# core/rate_limiter.py
"""Per-endpoint fixed-window admission control.

The limiter is advisory: `check_rate_limit` answers yes or no and never raises. Callers
decide whether a denial becomes an error, a silent skip or a deferred retry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from core import clock

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitWindow:
    endpoint: str
    count: int
    window_start: float
    window_ms: int
    max_requests: int
    denied: int = 0


class RateLimiter:
    """Track one admission window per endpoint."""

    def __init__(self) -> None:
        self._windows: dict[str, RateLimitWindow] = {}

    def check_rate_limit(self, endpoint: str, max_requests: int, window_ms: int) -> bool:
        """Admit or deny one request for `endpoint`.

        A missing or elapsed window (`now - window_start > window_ms`) is reset and the
        request admitted. Otherwise the request is admitted while `count < max_requests`.

        Returns:
            True when the request is admitted, False when it is denied.
        """
        now = clock.now_ms()
        self._expire(now)
        window = self._windows.get(endpoint)

        if window is None or now - window.window_start > window_ms:
            self._windows[endpoint] = RateLimitWindow(
                endpoint=endpoint,
                count=1,
                window_start=now,
                window_ms=window_ms,
                max_requests=max_requests,
            )
            return True

        window.window_ms = window_ms
        window.max_requests = max_requests
        if window.count < max_requests:
            window.count += 1
            return True

        window.denied += 1
        logger.warning(
            "Rate limit exceeded",
            endpoint=endpoint,
            count=window.count,
            max_requests=max_requests,
            window_ms=window_ms,
        )
        return False

    def _expire(self, now: float) -> None:
        # An elapsed window behaves exactly like a missing one.
        stale = [key for key, window in self._windows.items() if now - window.window_start > window.window_ms]
        for key in stale:
            del self._windows[key]

    def get_status(self, endpoint: str | None = None) -> list[dict[str, Any]]:
        """Describe current windows, optionally only those whose endpoint starts with `endpoint`."""
        now = clock.now_ms()
        self._expire(now)
        status = []
        for key, window in self._windows.items():
            if endpoint is not None and not key.startswith(endpoint):
                continue
            elapsed = now - window.window_start
            status.append(
                {
                    "endpoint": key,
                    "requests": window.count,
                    "max_requests": window.max_requests,
                    "denied": window.denied,
                    "blocked": window.count >= window.max_requests and elapsed <= window.window_ms,
                    "reset_in_ms": max(0.0, window.window_ms - elapsed),
                }
            )
        return status

    def reset(self, endpoint: str | None = None) -> None:
        """Forget the window for `endpoint`, or all windows when omitted."""
        if endpoint is None:
            self._windows.clear()
        else:
            self._windows.pop(endpoint, None)
