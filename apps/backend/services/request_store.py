"""Bounded newest-first store of recent inbound requests (operator debugging only)."""
import threading
from collections import deque

from apps.backend.models.events import RequestLogEntry

DEFAULT_CAPACITY = 100


class RequestStore:
    """
    Newest entry first. Inserting past capacity drops exactly the oldest entry.
    Safe to share between the event loop and threadpool route handlers.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._items: deque[RequestLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def add(self, entry: RequestLogEntry) -> None:
        with self._lock:
            self._items.appendleft(entry)

    def snapshot(self) -> tuple[RequestLogEntry, ...]:
        with self._lock:
            return tuple(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
