"""Ingestion pipeline

Core producer -> buffer -> staging file -> queue -> worker -> loader path with:
- IntakeBuffer (concurrent append queue with atomic drain)
- StagingWriter (size/time triggered, atomic NDJSON staging files)
- IngestionQueue (FIFO hand-off of staged paths)
- IngestionWorker (bounded fixed-delay retries, cancellable waits)
- IdempotencyCache (one correlation id per staging file)
- IngestionPipeline orchestration, recovery & health checks
"""

from .types import BulkLoader, Destination, IngestResult, PipelineConfig, UploadState
from .buffer import IntakeBuffer
from .queue import IngestionQueue
from .idempotency import IdempotencyCache
from .staging import (
    StagingWriter,
    list_staged_files,
    read_staged_file,
    recover_staging_dir,
    serialize_ndjson,
)
from .worker import IngestionWorker
from .ingestion_pipeline import IngestionPipeline, PipelineHealth

__all__ = [
    # types
    "BulkLoader",
    "Destination",
    "IngestResult",
    "PipelineConfig",
    "UploadState",
    "PipelineHealth",
    # components
    "IntakeBuffer",
    "IngestionQueue",
    "IdempotencyCache",
    "StagingWriter",
    "IngestionWorker",
    "IngestionPipeline",
    # staging helpers
    "list_staged_files",
    "read_staged_file",
    "recover_staging_dir",
    "serialize_ndjson",
]
