from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Generic, List, TypeVar

T = TypeVar("T")


class IntakeBuffer(Generic[T]):
    """Unbounded append queue shared by producers and the staging writer.

    Safe for concurrent callers on any thread or task. ``drain_all`` swaps the
    backing deque under the lock, so every record lands in exactly one drain.
    """

    def __init__(self) -> None:
        self._items: Deque[T] = deque()
        self._lock = threading.Lock()

    def enqueue(self, item: T) -> int:
        """Append one record; returns the buffer size right after the append."""
        with self._lock:
            self._items.append(item)
            return len(self._items)

    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def drain_all(self) -> List[T]:
        """Remove and return everything buffered, oldest first."""
        with self._lock:
            if not self._items:
                return []
            items, self._items = self._items, deque()
        return list(items)
