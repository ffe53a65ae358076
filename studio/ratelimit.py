from __future__ import annotations

import os
import threading
import time
from typing import Dict, Optional, Tuple

WINDOW_SECONDS: int = int(os.getenv("RATE_WINDOW_SECONDS", "60"))
MAX_REQUESTS: int = int(os.getenv("RATE_MAX_REQUESTS", "30"))


def _bk(bucket: str, key: str) -> Tuple[str, str]:
    return (bucket or "default", key or "anon")


class FixedWindowLimiter:
    """In-process fixed window per (bucket, key)."""

    def __init__(self, window_seconds: Optional[int] = None, max_requests: Optional[int] = None) -> None:
        self.window_seconds = int(window_seconds or WINDOW_SECONDS)
        self.max_requests = int(max_requests or MAX_REQUESTS)
        self._lock = threading.Lock()
        self._store: Dict[Tuple[str, str], Dict[str, int]] = {}

    def check_and_increment(self, bucket: str, key: str, now: Optional[int] = None) -> Tuple[bool, int, int]:
        """
        Returns (allowed: bool, remaining: int, reset_ts: int)
        """
        now = now if now is not None else int(time.time())
        k = _bk(bucket, key)
        with self._lock:
            entry = self._store.get(k)
            if entry is None or now >= entry["reset_ts"]:
                entry = {"count": 0, "reset_ts": now + self.window_seconds}
                self._store[k] = entry
            if entry["count"] < self.max_requests:
                entry["count"] += 1
                return True, max(0, self.max_requests - entry["count"]), entry["reset_ts"]
            return False, 0, entry["reset_ts"]

    def reset(self) -> None:
        with self._lock:
            self._store.clear()


_default = FixedWindowLimiter()


def check_and_increment(bucket: str, key: str) -> Tuple[bool, int, int]:
    return _default.check_and_increment(bucket, key)


def _reset() -> None:
    """Used by tests to clear state."""
    _default.reset()
