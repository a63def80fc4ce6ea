"""Delayed callbacks. Anything returned must have a ``cancel()`` method."""

import threading
from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Schedule = Callable[[float, Callable[[], Any]], TimerHandle]


def thread_timer(delay: float, fn: Callable[[], Any]) -> threading.Timer:
    """Run ``fn`` on a daemon thread after ``delay`` seconds."""
    timer = threading.Timer(max(0.0, delay), fn)
    timer.daemon = True
    timer.start()
    return timer
