"""Sliding-window rate limiter for the magic-link endpoints

State is process-local. That is enough for soft throttling of email sends;
a multi-instance deployment that needs hard limits can swap in a shared
store behind the same ``record_and_check`` interface.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from threading import Lock

from cachetools import TTLCache

from balance.config import DEFAULT_RATE_LIMIT_MAX_REQUESTS, DEFAULT_RATE_LIMIT_WINDOW_SECONDS
from balance.observability.telemetry import log_event
from balance.utils.redaction import redact

_MAX_TRACKED_KEYS = 10000


def build_rate_limit_key(endpoint: str, ip: str | None, email: str) -> str:
    return f"{endpoint}:{ip or 'unknown'}:{email}"


class SlidingWindowRateLimiter:
    """
    Counts hits per key over a trailing window.

    A key is limited once the hits inside the window, including the current
    one, exceed ``max_requests``: with the default of 5, the 6th call in ten
    minutes is the first one refused.
    """

    def __init__(
        self,
        window_seconds: int = DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._lock = Lock()
        # Keys idle for a whole window have no hits worth keeping
        self._hits: TTLCache[str, list[float]] = TTLCache(
            maxsize=_MAX_TRACKED_KEYS, ttl=window_seconds, timer=clock
        )

    def _clean_old_hits(self, hits: list[float], now: float) -> list[float]:
        """Drop hits older than the window."""
        return [ts for ts in hits if now - ts < self.window_seconds]

    def record_and_check(self, key: str) -> bool:
        """Record a hit for ``key``; return True if the key is now over the limit."""
        with self._lock:
            now = self._clock()
            hits = self._clean_old_hits(self._hits.get(key, []), now)
            hits.append(now)
            self._hits[key] = hits
            limited = len(hits) > self.max_requests

        if limited:
            log_event("auth.rate_limit.exceeded", key=redact(key), hits=len(hits))
        return limited

    def is_rate_limited(self, endpoint: str, ip: str | None, email: str) -> bool:
        return self.record_and_check(build_rate_limit_key(endpoint, ip, email))

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
