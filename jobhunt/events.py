"""In-process event hub for new-job and poll notifications.

Each subscriber gets its own small bounded queue. Publishing never
blocks: a subscriber whose queue is full simply misses the event.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

SUBSCRIBER_BUFFER = 10

JOB_CREATED = "job.created"
POLL_FINISHED = "poll.finished"


@dataclass(frozen=True)
class Event:
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventHub:
    def __init__(self, buffer: int = SUBSCRIBER_BUFFER):
        self.buffer = buffer
        self._subscribers: set[queue.Queue] = set()
        self._lock = threading.Lock()

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self.buffer)
        with self._lock:
            self._subscribers.add(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            self._subscribers.discard(q)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: Event) -> int:
        """Offer the event to every subscriber. Returns how many received it."""
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for q in subscribers:
            try:
                q.put_nowait(event)
                delivered += 1
            except queue.Full:
                logger.debug("Dropping %s event for a slow subscriber", event.type)
        return delivered
