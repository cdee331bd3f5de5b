"""Structured pipeline events and the in-memory log buffer that retains them."""

import logging
import queue
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Protocol

LEVELS = ("info", "success", "warning", "error")
CATEGORIES = ("cache", "retrieval", "llm", "ingest", "gdrive", "system")

_LOGGING_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class LogEvent:
    id: str
    timestamp: float
    level: str
    category: str
    message: str
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level,
            "category": self.category,
            "message": self.message,
            "details": self.details,
        }


class EventSink(Protocol):
    """Anything the pipeline can publish structured events to."""

    def publish(
        self,
        level: str,
        category: str,
        message: str,
        details: dict | None = None,
    ) -> LogEvent: ...


class LogBuffer:
    """Bounded ring buffer of :class:`LogEvent` with queue-based fan-out.

    Every event is also written to the standard logger
    ``semantic_rag.<category>``. Subscribers receive events through their own
    bounded queue; a subscriber that stops draining only loses its own events.
    """

    def __init__(self, max_entries: int = 500, subscriber_queue_size: int = 1000) -> None:
        self._entries: deque[LogEvent] = deque(maxlen=max_entries)
        self._subscribers: list[queue.Queue] = []
        self._queue_size = subscriber_queue_size
        self._lock = threading.Lock()

    def publish(
        self,
        level: str,
        category: str,
        message: str,
        details: dict | None = None,
    ) -> LogEvent:
        if level not in LEVELS:
            raise ValueError(f"unknown event level: {level}")
        if category not in CATEGORIES:
            raise ValueError(f"unknown event category: {category}")

        event = LogEvent(
            id=uuid.uuid4().hex,
            timestamp=time.time(),
            level=level,
            category=category,
            message=message,
            details=dict(details or {}),
        )

        with self._lock:
            self._entries.append(event)
            subscribers = list(self._subscribers)

        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                pass

        logging.getLogger(f"semantic_rag.{category}").log(
            _LOGGING_LEVELS[level],
            "%s%s",
            message,
            f" {event.details}" if event.details else "",
        )
        return event

    def entries(self, limit: int | None = None, category: str | None = None) -> list[LogEvent]:
        """Return retained events, oldest first.

        Args:
            limit: Keep only the newest *limit* events (after filtering).
            category: Keep only events of this category.
        """
        with self._lock:
            result = list(self._entries)
        if category:
            result = [e for e in result if e.category == category]
        if limit:
            result = result[-limit:]
        return result

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self._queue_size)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __len__(self) -> int:
        return len(self._entries)
