"""
Pytest configuration and fixtures for ts-ingest.

Provides cross-platform event loop configuration, record builders and fake
bulk loaders.
"""

import asyncio
import sys
import time
from pathlib import Path
from typing import List, Tuple
from uuid import UUID

import pytest

from ts_ingest.models import Label, Sample, TimeSeries
from ts_ingest.pipeline import BulkLoader, Destination, IngestResult

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


def make_series(i: int, name: str = "up") -> TimeSeries:
    return TimeSeries(
        labels=[Label(name="__name__", value=name), Label(name="idx", value=str(i))],
        samples=[Sample(value=float(i), timestamp=1_700_000_000_000 + i)],
    )


class RecordingLoader(BulkLoader):
    """Succeeds, remembering each file's lines and correlation id."""

    def __init__(self):
        self.calls: List[Tuple[Path, UUID]] = []
        self.files: List[List[str]] = []

    async def ingest(self, file_path, destination, correlation_id, *, delete_source_on_success=True):
        self.calls.append((Path(file_path), correlation_id))
        self.files.append(Path(file_path).read_text(encoding="utf-8").splitlines())
        if delete_source_on_success:
            Path(file_path).unlink()
        return IngestResult(correlation_id, status="completed")

    @property
    def records(self) -> List[str]:
        return [line for lines in self.files for line in lines]


class FlakyLoader(BulkLoader):
    """Fails first N attempts, then succeeds (fail_first_n=-1 never succeeds)."""

    def __init__(self, fail_first_n: int = 1, exc: Exception = TimeoutError("service busy")):
        self._fail = fail_first_n
        self._exc = exc
        self.calls: List[Tuple[Path, UUID]] = []

    async def ingest(self, file_path, destination, correlation_id, *, delete_source_on_success=True):
        self.calls.append((Path(file_path), correlation_id))
        if self._fail != 0:
            if self._fail > 0:
                self._fail -= 1
            raise self._exc
        if delete_source_on_success:
            Path(file_path).unlink()
        return IngestResult(correlation_id, status="completed")


@pytest.fixture
def destination():
    return Destination(database="metrics", table="TimeSeries", mapping_name="ts_mapping")


@pytest.fixture
def series():
    """Factory for distinguishable TimeSeries records."""
    return make_series


@pytest.fixture
def recording_loader():
    return RecordingLoader()


@pytest.fixture
def flaky_loader():
    """Factory: flaky_loader(fail_first_n) -> FlakyLoader."""
    return FlakyLoader


@pytest.fixture
def staging_dir(tmp_path):
    d = tmp_path / "staging"
    d.mkdir()
    return d


@pytest.fixture
def wait_until():
    """Poll a plain predicate until it is true or the timeout passes."""

    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return predicate()

    return _wait


@pytest.fixture
def log_messages():
    """Capture loguru output as a list of (level, message)."""
    from loguru import logger

    captured: List[Tuple[str, str]] = []
    handler_id = logger.add(
        lambda m: captured.append((m.record["level"].name, m.record["message"])), level="DEBUG"
    )
    yield captured
    logger.remove(handler_id)
