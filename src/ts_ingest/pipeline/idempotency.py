"""
Idempotency cache: one correlation id per staging file.

The id is created on the first upload attempt for a path, presented to the
loader on every retry, and released once the file reaches a terminal state.
"""

from __future__ import annotations

import os
import threading
import uuid
from typing import Dict, Optional

from .types import PathLike


class IdempotencyCache:
    """Thread-safe map of staging path -> correlation id."""

    def __init__(self) -> None:
        self._ids: Dict[str, uuid.UUID] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(path: PathLike) -> str:
        return os.fspath(path)

    def get_or_create(self, path: PathLike) -> uuid.UUID:
        key = self._key(path)
        with self._lock:
            cid = self._ids.get(key)
            if cid is None:
                cid = uuid.uuid4()
                self._ids[key] = cid
            return cid

    def get(self, path: PathLike) -> Optional[uuid.UUID]:
        with self._lock:
            return self._ids.get(self._key(path))

    def release(self, path: PathLike) -> bool:
        """Drop the mapping. Returns False if nothing was held for ``path``."""
        with self._lock:
            return self._ids.pop(self._key(path), None) is not None

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        with self._lock:
            return self._key(path) in self._ids

    def __len__(self) -> int:
        return len(self._ids)
