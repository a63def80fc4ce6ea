"""
gladiator/bus.py - Fan-out of state-change events.

The scheduler only ever calls ``publish``. How events reach spectators
(WebSockets, a log, a test list) is the subscriber's business. Delivery is
best-effort: a failing subscriber is logged and skipped, never retried, and
never allowed to abort the mutation that published.
"""

import itertools
import logging
import threading
from datetime import datetime
from typing import Any, Callable

from .models import iso, utc_now

logger = logging.getLogger(__name__)

Event = dict[str, Any]
Subscriber = Callable[[Event], None]


class NotificationBus:
    """Synchronous publish, fire-and-forget delivery."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._subscribers: dict[int, Subscriber] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> int:
        """Register a callback. Returns a token for ``unsubscribe``."""
        with self._lock:
            token = next(self._ids)
            self._subscribers[token] = callback
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscribers.pop(token, None) is not None

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event_type: str, payload: Any = None) -> Event:
        event = {"type": event_type, "payload": payload, "t": iso(self._clock())}
        with self._lock:
            subscribers = list(self._subscribers.values())
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Subscriber failed on {event_type!r} event: {e}")
        return event
