from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union
from uuid import UUID

PathLike = Union[str, "os.PathLike[str]"]


@dataclass(frozen=True)
class Destination:
    """Sink location: database/table plus optional ingestion mapping."""

    database: str
    table: str
    mapping_name: Optional[str] = None
    data_format: str = "multijson"


@dataclass(frozen=True)
class PipelineConfig:
    """Flush thresholds and retry budget for one pipeline instance."""

    max_batch_size: int = 1000  # flush once the buffer holds more than this
    max_batch_interval_seconds: float = 10.0  # or when this much time passes
    max_retries: int = 3  # total upload attempts per staging file
    ms_between_retries: int = 5000
    queue_poll_seconds: float = 1.0
    staging_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "ts-ingest")
    recover_on_start: bool = True

    def __post_init__(self) -> None:
        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        if self.max_batch_interval_seconds <= 0:
            raise ValueError("max_batch_interval_seconds must be > 0")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.ms_between_retries < 0:
            raise ValueError("ms_between_retries must be >= 0")
        if self.queue_poll_seconds <= 0:
            raise ValueError("queue_poll_seconds must be > 0")
        object.__setattr__(self, "staging_dir", Path(self.staging_dir))


class UploadState(str, Enum):
    """Lifecycle of one staging file inside the ingestion worker."""

    PENDING = "pending"
    UPLOADING = "uploading"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    PERMANENTLY_FAILED = "permanently_failed"
    MISSING = "missing"  # file vanished before upload
    ABANDONED = "abandoned"  # shutdown arrived during retry backoff

    @property
    def terminal(self) -> bool:
        return self in (
            UploadState.SUCCEEDED,
            UploadState.PERMANENTLY_FAILED,
            UploadState.MISSING,
            UploadState.ABANDONED,
        )


@dataclass(frozen=True)
class IngestResult:
    """What a bulk loader reports for an accepted file."""

    correlation_id: UUID
    status: str = "queued"  # queued | completed | duplicate
    details: Optional[str] = None


class BulkLoader(ABC):
    """Sink-side capability that ingests one staging file.

    Implementations must treat a repeated ``correlation_id`` as the same
    logical upload. Any exception is an upload failure; the worker retries
    within its budget.
    """

    async def __aenter__(self) -> "BulkLoader":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        return None

    @abstractmethod
    async def ingest(
        self,
        file_path: Path,
        destination: Destination,
        correlation_id: UUID,
        *,
        delete_source_on_success: bool = True,
    ) -> IngestResult: ...
