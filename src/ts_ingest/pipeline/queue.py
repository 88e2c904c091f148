from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional


class IngestionQueue:
    """Unbounded FIFO hand-off of staging-file paths from writer to worker.

    ``get`` is cancel-safe: a cancelled waiter never consumes a path.
    """

    def __init__(self) -> None:
        self._q: asyncio.Queue[Path] = asyncio.Queue()

    @property
    def size(self) -> int:
        return self._q.qsize()

    def empty(self) -> bool:
        return self._q.empty()

    async def put(self, path: Path) -> None:
        await self._q.put(Path(path))

    async def get(self, timeout: Optional[float] = None) -> Path:
        """Next path in publish order; raises asyncio.TimeoutError on timeout."""
        if timeout is None:
            return await self._q.get()
        return await asyncio.wait_for(self._q.get(), timeout=timeout)
