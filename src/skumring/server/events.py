"""Event bus for real-time push notifications.

Fans out player events (state changes, retries, health updates) to any
number of subscriber queues. The HTTP API turns each subscriber into a
Server-Sent Events stream. A bounded history is kept in memory for
recent-events queries; nothing is written to disk.
"""

import logging
import queue
import threading
import time
from collections import deque

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 50
HISTORY_SIZE = 200


class EventBus:
    """Thread-safe event bus with subscriber management.

    Events are emitted from the controller's command thread and pushed to
    every subscriber queue. A subscriber whose queue is full is dropped.
    """

    def __init__(self, history_size: int = HISTORY_SIZE):
        self._subscribers: list[queue.Queue] = []
        self._history: deque = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def emit(
        self,
        event_type: str,
        title: str = "",
        detail: str = "",
        item_id: str | None = None,
        data: dict | None = None,
    ):
        """Emit an event to all subscribers.

        Args:
            event_type: Category (e.g. "state", "playback", "retry", "failed", "health")
            title: Short human-readable summary
            detail: Longer detail text
            item_id: Associated library item ID, if any
            data: Structured payload (snapshots, health records)
        """
        event = {
            "type": event_type,
            "title": title,
            "detail": detail,
            "item_id": item_id,
            "data": data or {},
            "timestamp": time.time(),
        }

        dead = []
        with self._lock:
            self._history.append(event)
            for q in self._subscribers:
                try:
                    q.put_nowait(event)
                except queue.Full:
                    dead.append(q)

            for q in dead:
                self._subscribers.remove(q)
                logger.debug("Removed dead subscriber (queue full)")

        logger.debug("Emitted event: %s - %s", event_type, title)

    def subscribe(self) -> queue.Queue:
        """Create a new subscriber queue.

        Returns a Queue that receives event dicts. The caller should drain
        it and call unsubscribe() when done.
        """
        q = queue.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        with self._lock:
            self._subscribers.append(q)
        logger.debug("New subscriber (total: %d)", len(self._subscribers))
        return q

    def unsubscribe(self, q: queue.Queue):
        """Remove a subscriber queue."""
        with self._lock:
            try:
                self._subscribers.remove(q)
            except ValueError:
                pass
        logger.debug("Subscriber removed (total: %d)", len(self._subscribers))

    def recent(self, limit: int = 20, event_type: str | None = None) -> list[dict]:
        """Most recent events first, optionally filtered by type."""
        with self._lock:
            events = list(self._history)
        if event_type:
            events = [e for e in events if e["type"] == event_type]
        return list(reversed(events))[:limit]

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
