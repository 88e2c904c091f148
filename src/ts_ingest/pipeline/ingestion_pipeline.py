from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Generic, Iterable, Optional, TypeVar

from loguru import logger

from ..errors import PipelineClosedError, StagingWriteError
from ..metrics.registry import BUFFER_RECORDS, RECORDS_ENQUEUED_TOTAL
from .buffer import IntakeBuffer
from .idempotency import IdempotencyCache
from .queue import IngestionQueue
from .staging import StagingWriter, recover_staging_dir
from .types import BulkLoader, Destination, PipelineConfig
from .worker import IngestionWorker

T = TypeVar("T")


@dataclass(frozen=True)
class PipelineHealth:
    buffered_records: int
    queued_files: int
    inflight_ids: int
    interval_alive: bool
    worker_alive: bool
    staging_dir: str
    uploads: Dict[str, int] = field(default_factory=dict)
    worker_state: Optional[str] = None  # pending | uploading | retrying, None when idle
    current_file: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.interval_alive and self.worker_alive


class IngestionPipeline(Generic[T]):
    """Buffer -> staging files -> bulk loader, owned by one explicit object.

    Usage:

        async with IngestionPipeline(loader, destination, PipelineConfig(...)) as p:
            await p.submit_many(records)

    ``submit``/``submit_many`` return once records are in memory. Staging is
    driven by the size threshold (checked after every record) and by an
    interval task; a single worker uploads staged files in FIFO order.
    """

    def __init__(
        self,
        loader: BulkLoader,
        destination: Destination,
        config: Optional[PipelineConfig] = None,
        *,
        pipeline_id: str = "default",
    ):
        self._cfg = config or PipelineConfig()
        self._loader = loader
        self._destination = destination
        self.pipeline_id = pipeline_id

        self.buffer: IntakeBuffer[T] = IntakeBuffer()
        self.queue = IngestionQueue()
        self.cache = IdempotencyCache()
        self.writer = StagingWriter(self.buffer, self.queue, self._cfg.staging_dir)

        self._stop = asyncio.Event()  # single shutdown signal for every wait
        self.worker = IngestionWorker(
            queue=self.queue,
            loader=loader,
            destination=destination,
            cache=self.cache,
            stop_event=self._stop,
            max_retries=self._cfg.max_retries,
            ms_between_retries=self._cfg.ms_between_retries,
            poll_interval=self._cfg.queue_poll_seconds,
            worker_id=pipeline_id,
        )
        self._interval_task: Optional[asyncio.Task] = None
        self._started = False
        self._closed = False

    @property
    def config(self) -> PipelineConfig:
        return self._cfg

    @property
    def destination(self) -> Destination:
        return self._destination

    # --------------------------- lifecycle

    async def __aenter__(self) -> "IngestionPipeline[T]":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop(drain=True)

    async def start(self) -> None:
        if self._started:
            return
        if self._closed:
            raise PipelineClosedError("pipeline already stopped")
        self._started = True

        if self._cfg.recover_on_start:
            for path in recover_staging_dir(self._cfg.staging_dir):
                await self.queue.put(path)

        self._interval_task = asyncio.create_task(
            self._interval_loop(), name=f"flush-interval-{self.pipeline_id}"
        )
        self.worker.start()
        logger.info(
            f"Pipeline '{self.pipeline_id}' started: max_batch_size={self._cfg.max_batch_size} "
            f"interval={self._cfg.max_batch_interval_seconds}s "
            f"max_retries={self._cfg.max_retries} staging={self._cfg.staging_dir}"
        )

    async def stop(self, drain: bool = True, timeout: Optional[float] = 30.0) -> None:
        """Stage what is buffered, signal shutdown and wait for the worker.

        With ``drain`` the worker keeps uploading queued files (without retry
        backoff) until the queue is empty or ``timeout`` elapses. Files not
        uploaded stay in the staging directory.
        """
        if self._closed:
            return
        self._closed = True

        if self._started:
            await self._contained_flush("shutdown")

        self.worker.drain_on_stop = drain
        self._stop.set()

        if self._interval_task is not None:
            await self._interval_task
        await self.worker.join(timeout=timeout)

        if self.buffer.size():
            logger.warning(
                f"Pipeline '{self.pipeline_id}' stopped with {self.buffer.size()} "
                "unstaged record(s) in memory"
            )
        if self.queue.size:
            logger.warning(
                f"Pipeline '{self.pipeline_id}' stopped with {self.queue.size} staged file(s) "
                f"not uploaded; they remain in {self._cfg.staging_dir}"
            )
        logger.info(f"Pipeline '{self.pipeline_id}' stopped")

    # --------------------------- intake

    async def submit(self, record: T) -> None:
        if self._closed:
            raise PipelineClosedError("pipeline is stopped")
        size = self.buffer.enqueue(record)
        RECORDS_ENQUEUED_TOTAL.inc()
        BUFFER_RECORDS.labels(self.pipeline_id).set(size)
        if size > self._cfg.max_batch_size:
            logger.debug(
                f"Buffer size {size} exceeds max batch size {self._cfg.max_batch_size}; flushing"
            )
            await self._contained_flush("threshold")

    async def submit_many(self, records: Iterable[T]) -> int:
        n = 0
        for record in records:
            await self.submit(record)
            n += 1
        return n

    async def flush(self) -> Optional[Path]:
        """Stage the buffer now. Raises StagingWriteError on write failure."""
        try:
            return await self.writer.flush("manual")
        finally:
            self._update_buffer_gauge()

    async def _contained_flush(self, trigger: str) -> Optional[Path]:
        try:
            return await self.writer.flush(trigger)
        except StagingWriteError:
            # already logged by the writer; producers never see staging failures
            return None
        finally:
            self._update_buffer_gauge()

    def _update_buffer_gauge(self) -> None:
        BUFFER_RECORDS.labels(self.pipeline_id).set(self.buffer.size())

    async def _interval_loop(self) -> None:
        interval = self._cfg.max_batch_interval_seconds
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            size = self.buffer.size()
            if size > 0:
                logger.debug(f"Max batch interval reached with {size} buffered record(s); flushing")
                await self._contained_flush("interval")
        self._update_buffer_gauge()

    # --------------------------- observability

    def health(self) -> PipelineHealth:
        return PipelineHealth(
            buffered_records=self.buffer.size(),
            queued_files=self.queue.size,
            inflight_ids=len(self.cache),
            interval_alive=self._interval_task is not None and not self._interval_task.done(),
            worker_alive=self.worker.is_alive,
            staging_dir=str(self._cfg.staging_dir),
            uploads={state.value: n for state, n in self.worker.results.items()},
            worker_state=self.worker.state.value if self.worker.state else None,
            current_file=str(self.worker.current) if self.worker.current else None,
        )
