"""
Unit tests for IngestionWorker retry, idempotency and shutdown behavior.
"""

import asyncio

import pytest

from ts_ingest.pipeline import IdempotencyCache, IngestionQueue, IngestionWorker, UploadState


class CountingCache(IdempotencyCache):
    def __init__(self):
        super().__init__()
        self.released = []

    def release(self, path):
        removed = super().release(path)
        if removed:
            self.released.append(str(path))
        return removed


def _staged(staging_dir, name="timeseries_20240101000000000000_000000.json"):
    p = staging_dir / name
    p.write_text('{"labels": [], "samples": []}\n')
    return p


def _worker(loader, destination, *, max_retries=3, ms_between_retries=1, cache=None, stop=None):
    return IngestionWorker(
        queue=IngestionQueue(),
        loader=loader,
        destination=destination,
        cache=cache if cache is not None else CountingCache(),
        stop_event=stop if stop is not None else asyncio.Event(),
        max_retries=max_retries,
        ms_between_retries=ms_between_retries,
        poll_interval=0.05,
    )


@pytest.mark.asyncio
async def test_fails_twice_then_succeeds(staging_dir, destination, flaky_loader):
    """Scenario C: 3 attempts, same correlation id, file deleted, id released."""
    path = _staged(staging_dir)
    loader = flaky_loader(fail_first_n=2)
    cache = CountingCache()
    worker = _worker(loader, destination, cache=cache)

    state = await worker.process(path)

    assert state is UploadState.SUCCEEDED
    assert len(loader.calls) == 3
    assert len({cid for _, cid in loader.calls}) == 1
    assert not path.exists()
    assert cache.released == [str(path)]
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_exhausted_retries_leave_file_and_release_once(
    staging_dir, destination, flaky_loader, log_messages
):
    """Scenario D: 3 failures with max_retries=3 -> permanent failure."""
    path = _staged(staging_dir)
    loader = flaky_loader(fail_first_n=-1)
    cache = CountingCache()
    worker = _worker(loader, destination, cache=cache)

    state = await worker.process(path)

    assert state is UploadState.PERMANENTLY_FAILED
    assert len(loader.calls) == 3
    assert len({cid for _, cid in loader.calls}) == 1
    assert path.exists()
    assert cache.released == [str(path)]
    assert worker.results[UploadState.PERMANENTLY_FAILED] == 1

    errors = [msg for level, msg in log_messages if level == "ERROR"]
    assert any("permanent failure" in msg and path.name in msg for msg in errors)


@pytest.mark.asyncio
async def test_missing_file_is_handled_and_releases_id(staging_dir, destination, flaky_loader):
    path = staging_dir / "timeseries_gone.json"
    loader = flaky_loader(fail_first_n=0)
    cache = CountingCache()
    worker = _worker(loader, destination, cache=cache)

    state = await worker.process(path)

    assert state is UploadState.MISSING
    assert loader.calls == []
    assert cache.released == [str(path)]


@pytest.mark.asyncio
async def test_file_vanishing_between_retries_counts_as_handled(
    staging_dir, destination, recording_loader
):
    """An earlier attempt that actually succeeded removes the file; stop retrying."""
    path = _staged(staging_dir)

    class SucceedsButReportsFailure(type(recording_loader)):
        async def ingest(self, file_path, destination, correlation_id, **kw):
            await super().ingest(file_path, destination, correlation_id, **kw)
            raise ConnectionError("response lost")

    loader = SucceedsButReportsFailure()
    worker = _worker(loader, destination)

    state = await worker.process(path)

    assert state is UploadState.MISSING
    assert len(loader.calls) == 1


@pytest.mark.asyncio
async def test_shutdown_interrupts_retry_backoff(staging_dir, destination, flaky_loader):
    path = _staged(staging_dir)
    loader = flaky_loader(fail_first_n=-1)
    stop = asyncio.Event()
    cache = CountingCache()
    worker = _worker(loader, destination, ms_between_retries=60_000, stop=stop, cache=cache)

    task = asyncio.create_task(worker.process(path))
    await asyncio.sleep(0.05)
    assert len(loader.calls) == 1

    stop.set()
    state = await asyncio.wait_for(task, timeout=1.0)

    assert state is UploadState.ABANDONED
    assert path.exists()
    assert cache.released == [str(path)]


@pytest.mark.asyncio
async def test_worker_loop_uploads_in_fifo_order(staging_dir, destination, recording_loader, wait_until):
    stop = asyncio.Event()
    worker = _worker(recording_loader, destination, stop=stop)
    paths = [_staged(staging_dir, f"timeseries_2024010100000{i}000000_000000.json") for i in range(3)]

    worker.start()
    for p in paths:
        await worker._queue.put(p)

    assert await wait_until(lambda: len(recording_loader.calls) == 3)
    assert [p for p, _ in recording_loader.calls] == paths
    assert worker.results[UploadState.SUCCEEDED] == 3

    stop.set()
    await asyncio.wait_for(worker.join(), timeout=1.0)
    assert not worker.is_alive


@pytest.mark.asyncio
async def test_idle_worker_stops_promptly(destination, recording_loader):
    stop = asyncio.Event()
    worker = IngestionWorker(
        queue=IngestionQueue(),
        loader=recording_loader,
        destination=destination,
        cache=IdempotencyCache(),
        stop_event=stop,
        poll_interval=60.0,
    )
    worker.start()
    await asyncio.sleep(0.02)

    stop.set()
    await asyncio.wait_for(worker.join(), timeout=1.0)
    assert not worker.is_alive


@pytest.mark.asyncio
async def test_worker_survives_permanent_failure_and_continues(
    staging_dir, destination, flaky_loader, wait_until
):
    loader = flaky_loader(fail_first_n=2)
    stop = asyncio.Event()
    worker = _worker(loader, destination, max_retries=2, stop=stop)
    first = _staged(staging_dir, "timeseries_1.json")
    second = _staged(staging_dir, "timeseries_2.json")

    worker.start()
    await worker._queue.put(first)
    await worker._queue.put(second)

    assert await wait_until(lambda: worker.results[UploadState.SUCCEEDED] == 1)
    assert worker.results[UploadState.PERMANENTLY_FAILED] == 1
    assert first.exists()
    assert not second.exists()

    stop.set()
    await worker.join(timeout=1.0)


def test_max_retries_must_be_positive(destination, recording_loader):
    with pytest.raises(ValueError):
        IngestionWorker(
            queue=IngestionQueue(),
            loader=recording_loader,
            destination=destination,
            cache=IdempotencyCache(),
            stop_event=asyncio.Event(),
            max_retries=0,
        )
