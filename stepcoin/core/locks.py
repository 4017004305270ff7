"""
Per-key mutual exclusion with bounded waits.

Per-user state (tier progress, streaks, daily records) is serialized on the
user id; redemptions are serialized on (user id, date). Locks live in-process;
cross-process safety comes from database transactions and the compare-and-swap
on the daily record.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Optional

from stepcoin.core.config import settings
from stepcoin.core.errors import ContentionError


class KeyedLockRegistry:
    """Hands out one lock per key; unused locks are dropped on release."""

    def __init__(self, name: str, default_timeout: float = 5.0):
        self.name = name
        self.default_timeout = default_timeout
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}
        self._guard = threading.Lock()

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._waiters[key] = self._waiters.get(key, 0) + 1
            return lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            remaining = self._waiters.get(key, 1) - 1
            if remaining <= 0:
                self._waiters.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._waiters[key] = remaining

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock for `key`, waiting at most `timeout` seconds.

        Raises ContentionError when the wait expires.
        """
        wait = self.default_timeout if timeout is None else timeout
        lock = self._checkout(key)
        acquired = lock.acquire(timeout=wait) if wait > 0 else lock.acquire(blocking=False)
        if not acquired:
            self._checkin(key)
            raise ContentionError(f"{self.name} busy for {key!r}")
        try:
            yield
        finally:
            lock.release()
            self._checkin(key)

    def is_locked(self, key: Hashable) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# user_id -> tier/streak/daily record updates; (user_id, day) -> redemption
user_locks = KeyedLockRegistry("user", default_timeout=settings.USER_LOCK_TIMEOUT_SECONDS)
redemption_locks = KeyedLockRegistry("redemption", default_timeout=settings.REDEMPTION_LOCK_TIMEOUT_SECONDS)
