"""
Event Bus

Thread-safe publish/subscribe channel between the upload manager and its
consumers (CLI, GUI bridge, tests).

Handlers run synchronously in the publishing thread, so they must be quick.
A handler that raises is logged and skipped; it never breaks the publisher.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Tuple

# Subscribe with this event type to receive every event
ALL_EVENTS = "*"

EventHandler = Callable[[str, Any], None]


@dataclass(frozen=True)
class UploadManagerSnapshot:
    """
    Immutable view of the upload manager state.

    Published with every "state-changed" event; containers are tuples of
    plain dictionaries so subscribers can keep them without locking.
    """

    initialized: bool
    paused: bool
    providers: Tuple[str, ...]
    accounts: Tuple[Dict[str, Any], ...]
    active: Tuple[Dict[str, Any], ...]
    queued: Tuple[Dict[str, Any], ...]
    completed: Tuple[Dict[str, Any], ...]
    taken_at: datetime = field(default_factory=datetime.now)

    @property
    def queue_status(self) -> Dict[str, Any]:
        return {
            "paused": self.paused,
            "queue_length": len(self.queued),
            "active_uploads": len(self.active),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "accounts": list(self.accounts),
            "providers": list(self.providers),
            "uploads": {
                "active": list(self.active),
                "queued": list(self.queued),
                "completed": list(self.completed),
            },
            "queue_status": self.queue_status,
        }


class EventBus:
    """
    Minimal event bus keyed by event name.

    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe("upload-completed", on_done)
        bus.publish("upload-completed", job_dict)
        unsubscribe()
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.subscribers: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, callback: EventHandler) -> Callable[[], None]:
        """
        Register a handler.

        Args:
            event_type: Event name, or ALL_EVENTS for everything
            callback: Called as callback(event_type, data)

        Returns:
            Function that removes this subscription
        """
        with self._lock:
            self.subscribers.setdefault(event_type, []).append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(event_type, callback)

        return unsubscribe

    def unsubscribe(self, event_type: str, callback: EventHandler) -> None:
        with self._lock:
            handlers = self.subscribers.get(event_type, [])
            if callback in handlers:
                handlers.remove(callback)

    def publish(self, event_type: str, data: Any = None) -> None:
        """Send an event to its subscribers and to wildcard subscribers"""
        with self._lock:
            handlers = list(self.subscribers.get(event_type, []))
            if event_type != ALL_EVENTS:
                handlers += self.subscribers.get(ALL_EVENTS, [])

        for handler in handlers:
            try:
                handler(event_type, data)
            except Exception as e:
                self.logger.error(
                    f"Event handler failed for '{event_type}': {e}",
                    exc_info=True,
                )

    def clear(self) -> None:
        with self._lock:
            self.subscribers.clear()
