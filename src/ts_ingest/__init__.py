"""
ts-ingest: buffered, durable time-series ingestion.

Metrics agents push time series over HTTP; records are buffered in memory,
staged to NDJSON files on a size or time trigger, and uploaded to a
columnar analytics sink with bounded, idempotent retries.

Usage:
    from ts_ingest import IngestionPipeline, PipelineConfig, Destination
    from ts_ingest.loaders import LocalDirectoryLoader

    async with IngestionPipeline(
        LocalDirectoryLoader("/data/loaded"),
        Destination(database="metrics", table="TimeSeries"),
        PipelineConfig(max_batch_size=500, max_batch_interval_seconds=5),
    ) as pipeline:
        await pipeline.submit_many(series)
"""

from .models import Label, Sample, TimeSeries, WriteRequest
from .pipeline import (
    BulkLoader,
    Destination,
    IngestResult,
    IngestionPipeline,
    PipelineConfig,
    PipelineHealth,
    UploadState,
)

__version__ = "0.1.0"
__all__ = [
    "Label",
    "Sample",
    "TimeSeries",
    "WriteRequest",
    "BulkLoader",
    "Destination",
    "IngestResult",
    "IngestionPipeline",
    "PipelineConfig",
    "PipelineHealth",
    "UploadState",
]
