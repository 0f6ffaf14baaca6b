"""Delayed callbacks for dialogue timers and the post-speech settling delay."""

import threading
from typing import Callable, Protocol


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> "threading.Timer": ...


class ThreadingScheduler:
    """Runs each callback on its own daemon threading.Timer."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer
