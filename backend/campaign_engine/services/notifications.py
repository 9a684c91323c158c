"""In-process event broadcaster for UI push channels.

The engine only publishes; whatever feeds connected clients (SSE, websockets)
subscribes a callable. A subscriber that raises is dropped.
"""
import threading
from typing import Any, Callable, Dict, Set
import structlog

logger = structlog.get_logger()

Subscriber = Callable[[str, Dict[str, Any]], None]


class EventBroadcaster:
    """Fan-out of named events to registered subscribers."""

    def __init__(self):
        self._subscribers: Set[Subscriber] = set()
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.add(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.discard(subscriber)

    def publish(self, event_name: str, payload: Dict[str, Any]) -> int:
        """Deliver an event to every subscriber. Returns how many received it."""
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for subscriber in subscribers:
            try:
                subscriber(event_name, payload)
                delivered += 1
            except Exception as e:
                self.unsubscribe(subscriber)
                logger.warning("Dropping failing subscriber", event_name=event_name, error=str(e))
        return delivered


broadcaster = EventBroadcaster()
