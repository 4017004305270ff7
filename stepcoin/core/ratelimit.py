"""
Sliding-window rate limiter for redemption attempts.

- In-memory, keyed by user_id.
- Thread-safe; time source injectable for tests.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict


@dataclass
class RateLimitConfig:
    enabled: bool = True
    limit: int = 5
    window_seconds: float = 60.0


class SlidingWindowLimiter:
    def __init__(self, config: RateLimitConfig, time_fn: Callable[[], float] = time.monotonic):
        self.config = config
        self.time_fn = time_fn
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        hits = self._hits.setdefault(key, deque())
        cutoff = now - self.config.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def allow(self, key: str) -> bool:
        """Record one attempt for `key`; False once the window is full."""
        if not self.config.enabled:
            return True
        with self._lock:
            now = self.time_fn()
            hits = self._prune(key, now)
            if len(hits) >= self.config.limit:
                return False
            hits.append(now)
            return True

    def remaining(self, key: str) -> int:
        if not self.config.enabled:
            return self.config.limit
        with self._lock:
            hits = self._prune(key, self.time_fn())
            return max(0, self.config.limit - len(hits))

    def retry_after(self, key: str) -> float:
        """Seconds until the oldest attempt in the window expires."""
        with self._lock:
            now = self.time_fn()
            hits = self._prune(key, now)
            if len(hits) < self.config.limit or not hits:
                return 0.0
            return max(0.0, hits[0] + self.config.window_seconds - now)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


def build_rate_limit_config(settings_obj) -> RateLimitConfig:
    return RateLimitConfig(
        enabled=bool(settings_obj.RATE_LIMIT_ENABLED),
        limit=max(1, int(settings_obj.REDEMPTION_RATE_LIMIT_ATTEMPTS)),
        window_seconds=float(settings_obj.REDEMPTION_RATE_LIMIT_WINDOW_SECONDS),
    )
