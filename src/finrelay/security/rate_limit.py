from __future__ import annotations

"""Fixed-window rate limiting for AI relay requests."""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Callable, Dict, Optional, Tuple


@dataclass
class _RateLimitEntry:
    count: int
    window_end: datetime


class RateLimitExceeded(Exception):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Rate limit exceeded")
        self.retry_after_seconds = retry_after_seconds


class RateLimiter:
    """Counts actions per ``(key, identifier)`` inside expiring windows.

    Expired windows are dropped on every call, so the store never outgrows the
    set of identifiers active within one window.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._entries: Dict[Tuple[str, str], _RateLimitEntry] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = RLock()

    def _purge(self, now: datetime) -> None:
        expired = [k for k, e in self._entries.items() if e.window_end <= now]
        for k in expired:
            del self._entries[k]

    def hit(self, key: str, identifier: str, *, limit: int, window_seconds: int) -> None:
        """Record one action; raises RateLimitExceeded if it should be blocked."""

        with self._lock:
            now = self._clock()
            self._purge(now)
            store_key = (key, identifier)
            entry = self._entries.get(store_key)
            if entry is None:
                self._entries[store_key] = _RateLimitEntry(count=1, window_end=now + timedelta(seconds=window_seconds))
                return
            if entry.count >= limit:
                retry_after = int((entry.window_end - now).total_seconds())
                raise RateLimitExceeded(max(retry_after, 1))
            entry.count += 1

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()


_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    return _limiter


def rate_limit_relay(user_id: int, identifier: str, limiter: Optional[RateLimiter] = None) -> None:
    """Count one AI relay for the caller (by user id, else by client identifier)."""

    if _rate_limiting_disabled():
        return
    (limiter or _limiter).hit(
        "ai_relay",
        str(user_id) if user_id else identifier,
        limit=_env_int("FINRELAY_AI_RATE_LIMIT", 20),
        window_seconds=_env_int("FINRELAY_AI_RATE_WINDOW_SEC", 60),
    )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _rate_limiting_disabled() -> bool:
    flag = os.getenv("FINRELAY_RATE_LIMIT_DISABLED")
    return bool(flag and flag.lower() in {"1", "true", "yes", "on"})
