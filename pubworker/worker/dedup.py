import threading
from collections import deque
from typing import Deque, Set

MAX_DEDUPLICATION_ITEMS = 1000


class DeduplicationCache:
    """Bounded set of recently handled message ids.

    Eviction is FIFO: once more than `capacity` ids are recorded the one
    recorded earliest is dropped, whether or not it was looked up since.
    """

    def __init__(self, capacity: int = MAX_DEDUPLICATION_ITEMS):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._ids: Set[str] = set()
        self._order: Deque[str] = deque()
        self._lock = threading.Lock()

    def contains(self, message_id: str) -> bool:
        with self._lock:
            return message_id in self._ids

    __contains__ = contains

    def record(self, message_id: str):
        with self._lock:
            if message_id in self._ids:
                return
            self._ids.add(message_id)
            self._order.append(message_id)
            if len(self._order) > self.capacity:
                oldest = self._order.popleft()
                self._ids.discard(oldest)

    def __len__(self) -> int:
        with self._lock:
            return len(self._order)
