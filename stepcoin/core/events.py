"""
In-memory notification hub for domain events.

Events are plain dicts {"type": str, "payload": dict}. The core publishes
after its transaction commits; delivery to subscribers is best-effort and a
failing subscriber never affects the caller.
"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List

from stepcoin.core.metrics import notifications_published_total

logger = logging.getLogger("stepcoin")

TIER_ADVANCED = "tier-advanced"
STREAK_MILESTONE = "streak-milestone"
QUARTER_MILESTONE = "quarter-milestone"
REDEMPTION_SUCCEEDED = "redemption-succeeded"

EVENT_TYPES = (TIER_ADVANCED, STREAK_MILESTONE, QUARTER_MILESTONE, REDEMPTION_SUCCEEDED)

Subscriber = Callable[[dict], None]


def make_event(event_type: str, **payload) -> dict:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type: {event_type}")
    return {"type": event_type, "payload": payload}


class NotificationHub:
    """Thread-safe pub/sub with a bounded per-user buffer of recent events."""

    def __init__(self, buffer_size: int = 50):
        self.buffer_size = max(1, buffer_size)
        self._subscribers: List[Subscriber] = []
        self._recent: Dict[str, Deque[dict]] = {}
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, events: Iterable[dict]) -> int:
        """Buffer and fan out events. Returns the number published."""
        published = 0
        for event in events:
            user_id = str(event.get("payload", {}).get("user_id", ""))
            with self._lock:
                buffer = self._recent.setdefault(user_id, deque(maxlen=self.buffer_size))
                buffer.append(event)
                subscribers = list(self._subscribers)
            notifications_published_total.inc(labels={"event_type": event.get("type", "")})
            published += 1
            for callback in subscribers:
                try:
                    callback(event)
                except Exception:
                    logger.exception(
                        "notification.subscriber_failed",
                        extra={"event_type": event.get("type"), "user_id": user_id},
                    )
        return published

    def recent(self, user_id: str, limit: int = 50) -> List[dict]:
        """Most recent events for a user, newest first."""
        with self._lock:
            buffer = list(self._recent.get(user_id, ()))
        buffer.reverse()
        return buffer[:max(0, limit)]

    def reset(self) -> None:
        with self._lock:
            self._subscribers.clear()
            self._recent.clear()


hub = NotificationHub()
