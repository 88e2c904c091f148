"""
Staging writer: materializes the intake buffer into durable NDJSON files.

Each flush drains the buffer, writes the batch to ``<name>.tmp``, fsyncs,
renames it into place and only then publishes the final path to the
ingestion queue. A path seen by the worker always names a complete file.
"""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timezone
from itertools import count
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Sequence

from loguru import logger

from ..errors import StagingWriteError
from ..metrics.registry import FLUSHES_TOTAL, STAGED_FILES_TOTAL, STAGED_RECORDS_TOTAL
from .buffer import IntakeBuffer
from .queue import IngestionQueue

FILE_PREFIX = "timeseries_"
FILE_SUFFIX = ".json"
TMP_SUFFIX = ".tmp"

Serializer = Callable[[Sequence[Any]], bytes]


def serialize_ndjson(batch: Sequence[Any]) -> bytes:
    """One JSON document per line; pydantic models use their own encoder."""
    lines: List[str] = []
    for record in batch:
        if hasattr(record, "model_dump_json"):
            lines.append(record.model_dump_json())
        else:
            lines.append(json.dumps(record, default=str))
    return ("\n".join(lines) + "\n").encode("utf-8")


def staging_file_name(ts: datetime, seq: int) -> str:
    return f"{FILE_PREFIX}{ts:%Y%m%d%H%M%S%f}_{seq:06d}{FILE_SUFFIX}"


def list_staged_files(staging_dir: Path) -> List[Path]:
    """Published staging files in flush order (names sort chronologically)."""
    if not staging_dir.exists():
        return []
    return sorted(staging_dir.glob(f"{FILE_PREFIX}*{FILE_SUFFIX}"))


def recover_staging_dir(staging_dir: Path) -> List[Path]:
    """Remove unpublished temp files and return leftover staged files.

    Temp files were never published, so their batches are incomplete and
    discarded. Complete files are returned oldest first for re-queueing.
    """
    if not staging_dir.exists():
        return []
    for tmp in staging_dir.glob(f"{FILE_PREFIX}*{FILE_SUFFIX}{TMP_SUFFIX}"):
        logger.warning(f"Discarding incomplete staging file {tmp}")
        tmp.unlink(missing_ok=True)
    leftovers = list_staged_files(staging_dir)
    if leftovers:
        logger.info(f"Recovered {len(leftovers)} staging file(s) from {staging_dir}")
    return leftovers


def read_staged_file(path: Path) -> Iterable[dict]:
    with open(path, "r", encoding="utf-8") as fh:
        for line in fh:
            if line.strip():
                yield json.loads(line)


class StagingWriter:
    """Drains the intake buffer into staging files, one file per flush."""

    def __init__(
        self,
        buffer: IntakeBuffer,
        queue: IngestionQueue,
        staging_dir: Path,
        *,
        serializer: Serializer = serialize_ndjson,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._buffer = buffer
        self._queue = queue
        self._dir = Path(staging_dir)
        self._serializer = serializer
        self._clock = clock
        self._seq = count()
        self._lock = asyncio.Lock()  # drain + serialize + write + publish

        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def staging_dir(self) -> Path:
        return self._dir

    async def flush(self, trigger: str = "manual") -> Optional[Path]:
        """Stage whatever is buffered. Returns the published path, or None if empty.

        Raises StagingWriteError if the batch could not be written; the drained
        records are not restored.
        """
        async with self._lock:
            batch = self._buffer.drain_all()
            if not batch:
                FLUSHES_TOTAL.labels(trigger, "empty").inc()
                return None

            path = self._dir / staging_file_name(self._clock(), next(self._seq))
            try:
                await asyncio.to_thread(self._write_file, path, batch)
            except Exception as exc:
                FLUSHES_TOTAL.labels(trigger, "failure").inc()
                logger.error(
                    f"Staging write failed ({trigger}): {len(batch)} records lost: "
                    f"{type(exc).__name__}: {exc}"
                )
                raise StagingWriteError(f"could not stage {len(batch)} records: {exc}") from exc

            await self._queue.put(path)

            FLUSHES_TOTAL.labels(trigger, "staged").inc()
            STAGED_FILES_TOTAL.inc()
            STAGED_RECORDS_TOTAL.inc(len(batch))
            logger.info(f"Staged {len(batch)} records to {path.name} (trigger={trigger})")
            return path

    def _write_file(self, path: Path, batch: Sequence[Any]) -> None:
        tmp = path.with_name(path.name + TMP_SUFFIX)
        try:
            data = self._serializer(batch)
            with open(tmp, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
