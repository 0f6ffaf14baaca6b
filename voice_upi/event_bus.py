"""
Event bus - single-consumer event queue for the dialogue.

Every input to the dialogue (utterances, UI actions, timer firings) is
published here and handled by ONE worker thread, so commands are applied
strictly one at a time in arrival order. Informational events (state,
status, speech) travel the same queue for observers such as the REST API.
"""

import queue
import threading
import time
import traceback
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from voice_upi.utils import upi_log


class EventType(Enum):
    """System event types."""
    # Dialogue inputs
    UTTERANCE_RECEIVED = auto()
    UI_ACTION = auto()
    TIMER_FIRED = auto()

    # State
    STATE_CHANGED = auto()
    STATUS_CHANGED = auto()
    TRANSCRIPT_UPDATED = auto()
    LISTENING_CHANGED = auto()
    TRANSACTION_COMPLETED = auto()

    # TTS
    TTS_STARTED = auto()
    TTS_ENDED = auto()

    # Errors
    ERROR_RECOGNITION = auto()
    ERROR_TTS = auto()

    # System
    SYSTEM_STARTUP = auto()
    SYSTEM_SHUTDOWN = auto()


@dataclass
class Event:
    """One event on the bus."""
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    source: str = "unknown"

    def get(self, key: str, default=None):
        """Value from the payload."""
        return self.payload.get(key, default)

    def __repr__(self):
        return f"Event({self.type.name}, id={self.event_id}, src={self.source})"


class EventHandler:
    """Callback wrapper with priority."""

    def __init__(self, callback: Callable[[Event], None], priority: int = 0):
        self.callback = callback
        self.priority = priority

    def handle(self, event: Event):
        try:
            self.callback(event)
        except Exception as e:
            # A failing subscriber must not stop the worker
            upi_log("EVENT", f"Handler error on {event.type.name}: {e}", level="ERROR")
            traceback.print_exc()


class EventBus:
    """
    Pub/Sub bus with a single worker thread.

    Handlers run synchronously on the worker, highest priority first.
    """

    def __init__(self, max_queue_size: int = 1000):
        self._handlers: Dict[EventType, List[EventHandler]] = defaultdict(list)
        self._event_queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._worker_thread: Optional[threading.Thread] = None
        self._running = False
        self._stop_event = threading.Event()
        self._lock = threading.RLock()

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._worker_thread = threading.Thread(
            target=self._worker_loop,
            name="EventWorker",
            daemon=True,
        )
        self._worker_thread.start()
        upi_log("EVENT_BUS", "Started")

    def stop(self):
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        # Unblock the worker
        try:
            self._event_queue.put(None, block=False)
        except queue.Full:
            pass

        if self._worker_thread is not None:
            self._worker_thread.join(timeout=2.0)
            self._worker_thread = None
        upi_log("EVENT_BUS", "Stopped")

    def _worker_loop(self):
        while not self._stop_event.is_set():
            try:
                event = self._event_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            if event is None:  # stop signal
                break
            self._process_event(event)

    def run_pending(self, max_events: Optional[int] = None) -> int:
        """Process queued events on the calling thread (bus not started)."""
        processed = 0
        while max_events is None or processed < max_events:
            try:
                event = self._event_queue.get(block=False)
            except queue.Empty:
                break
            if event is None:
                continue
            self._process_event(event)
            processed += 1
        return processed

    def _process_event(self, event: Event):
        with self._lock:
            handlers = list(self._handlers.get(event.type, []))

        # Higher priority first
        handlers.sort(key=lambda h: h.priority, reverse=True)

        for handler in handlers:
            handler.handle(event)

    def publish(
        self,
        event_type: EventType,
        payload: Optional[Dict[str, Any]] = None,
        source: str = "unknown",
    ) -> Optional[Event]:
        """
        Publish an event.

        Args:
            event_type: Event type
            payload: Event data
            source: Publishing component

        Returns:
            The created event, or None if the queue was full
        """
        event = Event(type=event_type, payload=payload or {}, source=source)

        try:
            self._event_queue.put(event, block=False)
        except queue.Full:
            upi_log("EVENT_BUS", f"Queue full, event dropped: {event_type.name}", level="WARNING")
            return None
        return event

    def subscribe(
        self,
        event_type: EventType,
        callback: Callable[[Event], None],
        priority: int = 0,
    ) -> str:
        """
        Subscribe a handler.

        Returns:
            Subscription id (for unsubscribe)
        """
        handler = EventHandler(callback, priority)

        with self._lock:
            self._handlers[event_type].append(handler)

        handler_id = f"{event_type.name}_{id(handler)}"
        name = getattr(callback, "__name__", repr(callback))
        upi_log("EVENT_BUS", f"Subscribed {name} to {event_type.name} (priority={priority})", level="DEBUG")
        return handler_id

    def subscribe_multi(
        self,
        event_types: List[EventType],
        callback: Callable[[Event], None],
        priority: int = 0,
    ) -> List[str]:
        return [self.subscribe(event_type, callback, priority) for event_type in event_types]

    def unsubscribe(self, event_type: EventType, handler_id: str) -> bool:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            for handler in handlers:
                if f"{event_type.name}_{id(handler)}" == handler_id:
                    handlers.remove(handler)
                    return True
        return False
