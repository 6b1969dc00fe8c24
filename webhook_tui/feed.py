"""Bounded live-notification channel between ingestion and the UI."""

from __future__ import annotations

import queue
import threading
from typing import Iterator, Optional

from .config import FEED_CAPACITY
from .models import WebhookRecord


class LiveFeed:
    """Fixed-capacity queue with a drop-newest overflow policy.

    Producers never block: when the queue is full the new record is dropped
    from the live path (it is already persisted and shows up on the next
    reload).
    """

    def __init__(self, capacity: int = FEED_CAPACITY):
        self.capacity = capacity
        self._queue: "queue.Queue[WebhookRecord]" = queue.Queue(maxsize=capacity)
        self._dropped = 0
        self._lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def publish(self, record: WebhookRecord) -> bool:
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            with self._lock:
                self._dropped += 1
            return False
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[WebhookRecord]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def subscribe(self, stop: threading.Event, poll_interval: float = 0.25) -> Iterator[WebhookRecord]:
        """Yield records as they arrive until stop is set.

        Each delivery re-arms the wait immediately; the poll interval only
        bounds how long cancellation takes to be noticed.
        """
        while not stop.is_set():
            record = self.get(timeout=poll_interval)
            if record is not None:
                yield record

    def __len__(self) -> int:
        return self._queue.qsize()
