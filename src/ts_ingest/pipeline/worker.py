from __future__ import annotations

import asyncio
from collections import Counter
from pathlib import Path
from time import perf_counter
from typing import Optional

from loguru import logger

from ..errors import map_loader_error
from ..metrics.registry import (
    INFLIGHT_CORRELATION_IDS,
    INGESTION_QUEUE_FILES,
    UPLOAD_ATTEMPTS_TOTAL,
    UPLOAD_LATENCY_SECONDS,
    UPLOADS_TOTAL,
)
from .idempotency import IdempotencyCache
from .queue import IngestionQueue
from .types import BulkLoader, Destination, UploadState


class IngestionWorker:
    """Takes staging paths off the queue and uploads them one at a time.

    Per file: Pending -> Uploading -> Succeeded, or Retrying -> Uploading until
    the attempt budget runs out (PermanentlyFailed). The same correlation id is
    presented on every attempt and released on every terminal state.
    """

    def __init__(
        self,
        *,
        queue: IngestionQueue,
        loader: BulkLoader,
        destination: Destination,
        cache: IdempotencyCache,
        stop_event: asyncio.Event,
        max_retries: int = 3,
        ms_between_retries: int = 5000,
        poll_interval: float = 1.0,
        drain_on_stop: bool = True,
        worker_id: str = "ingest-0",
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._queue = queue
        self._loader = loader
        self._destination = destination
        self._cache = cache
        self._stop = stop_event
        self._max_retries = max_retries
        self._backoff_s = ms_between_retries / 1000.0
        self._poll = poll_interval
        self.drain_on_stop = drain_on_stop
        self.worker_id = worker_id

        self.results: Counter[UploadState] = Counter()
        self.current: Optional[Path] = None
        self.state: Optional[UploadState] = None  # state of `current`; None when idle
        self._task: Optional[asyncio.Task] = None

    # --------------------------- lifecycle

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"ingestion-worker-{self.worker_id}")

    @property
    def is_alive(self) -> bool:
        return self._task is not None and not self._task.done()

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the loop to exit after the stop event is set.

        On timeout the worker stops taking new paths but the upload in flight is
        allowed to finish.
        """
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"[{self.worker_id}] drain timed out with {self._queue.size} file(s) queued; "
                "finishing current upload only"
            )
            self.drain_on_stop = False
            await self._task

    # --------------------------- loop

    async def _run(self) -> None:
        logger.debug(f"[{self.worker_id}] ingestion worker started")
        while True:
            path = await self._next_path()
            if path is None:
                if self._stop.is_set():
                    break
                continue
            try:
                await self.process(path)
            except Exception as exc:  # noqa: BLE001
                # contained: a bad file must not kill the worker
                logger.exception(f"[{self.worker_id}] unexpected error processing {path}: {exc}")
            finally:
                INGESTION_QUEUE_FILES.labels(self.worker_id).set(self._queue.size)
        logger.debug(f"[{self.worker_id}] ingestion worker stopped")

    async def _next_path(self) -> Optional[Path]:
        """Next queued path, or None on poll timeout / shutdown."""
        if self._stop.is_set():
            if self.drain_on_stop and not self._queue.empty():
                return await self._queue.get()
            return None

        getter = asyncio.ensure_future(self._queue.get())
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait(
                {getter, stopper}, timeout=self._poll, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stopper.cancel()
        if getter.done():
            return getter.result()
        getter.cancel()  # queue.get is cancel-safe; nothing consumed
        INGESTION_QUEUE_FILES.labels(self.worker_id).set(self._queue.size)
        return None

    async def _wait_or_stop(self, seconds: float) -> bool:
        """Sleep for the retry backoff; True if shutdown interrupted it."""
        if self._stop.is_set():
            return True
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    # --------------------------- one file

    async def process(self, path: Path) -> UploadState:
        """Drive one staging file to a terminal state."""
        path = Path(path)
        self.current = path
        self.state = UploadState.PENDING
        cid = self._cache.get_or_create(path)
        INFLIGHT_CORRELATION_IDS.labels(self.worker_id).set(len(self._cache))
        retries = 0
        try:
            while True:
                if not path.exists():
                    logger.warning(
                        f"[{self.worker_id}] staging file {path} does not exist; "
                        f"treating as handled (source id {cid})"
                    )
                    return self._finish(path, UploadState.MISSING)

                logger.info(
                    f"[{self.worker_id}] ingesting {path.name} into "
                    f"{self._destination.database}.{self._destination.table} "
                    f"(source id {cid}, attempt {retries + 1}/{self._max_retries})"
                )
                self.state = UploadState.UPLOADING
                t0 = perf_counter()
                try:
                    result = await self._loader.ingest(
                        path, self._destination, cid, delete_source_on_success=True
                    )
                except Exception as exc:
                    UPLOAD_LATENCY_SECONDS.observe(perf_counter() - t0)
                    UPLOAD_ATTEMPTS_TOTAL.labels("failure").inc()
                    err = map_loader_error(exc)
                    retries += 1
                    if retries >= self._max_retries:
                        logger.error(
                            f"[{self.worker_id}] permanent failure ingesting {path} "
                            f"after {retries} attempts (source id {cid}); "
                            f"file left on disk: {type(err).__name__}: {err}"
                        )
                        return self._finish(path, UploadState.PERMANENTLY_FAILED)

                    logger.warning(
                        f"[{self.worker_id}] could not ingest {path.name} "
                        f"(attempt {retries}/{self._max_retries}, source id {cid}): "
                        f"{type(err).__name__}: {err}; retrying in {self._backoff_s:.3f}s"
                    )
                    self.state = UploadState.RETRYING
                    if await self._wait_or_stop(self._backoff_s):
                        logger.warning(
                            f"[{self.worker_id}] shutdown during retry backoff; "
                            f"{path} left on disk"
                        )
                        return self._finish(path, UploadState.ABANDONED)
                    continue

                UPLOAD_LATENCY_SECONDS.observe(perf_counter() - t0)
                UPLOAD_ATTEMPTS_TOTAL.labels("success").inc()
                logger.info(
                    f"[{self.worker_id}] ingested {path.name} (source id {cid}, "
                    f"status {result.status})"
                )
                return self._finish(path, UploadState.SUCCEEDED)
        except asyncio.CancelledError:
            self._cache.release(path)
            self.current = None
            self.state = None
            raise

    def _finish(self, path: Path, state: UploadState) -> UploadState:
        self._cache.release(path)
        self.current = None
        self.state = None
        self.results[state] += 1
        UPLOADS_TOTAL.labels(state.value).inc()
        INFLIGHT_CORRELATION_IDS.labels(self.worker_id).set(len(self._cache))
        return state
