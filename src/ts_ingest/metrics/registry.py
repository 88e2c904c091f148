"""
Prometheus metrics for the ingestion pipeline.

Metrics live in the global REGISTRY; the HTTP service exposes them on /metrics.
"""

from prometheus_client import Counter, Gauge, Histogram


# --- Intake / staging ---

RECORDS_ENQUEUED_TOTAL = Counter(
    "tsi_records_enqueued_total",
    "Total number of time series accepted into the intake buffer",
)

FLUSHES_TOTAL = Counter(
    "tsi_flushes_total",
    "Flush attempts by trigger and outcome",
    ["trigger", "outcome"],  # outcome: staged | empty | failure
)

STAGED_RECORDS_TOTAL = Counter(
    "tsi_staged_records_total",
    "Total number of time series written to staging files",
)

STAGED_FILES_TOTAL = Counter(
    "tsi_staged_files_total",
    "Total number of staging files published to the ingestion queue",
)

BUFFER_RECORDS = Gauge(
    "tsi_buffer_records",
    "Time series currently held in the intake buffer",
    ["pipeline"],
)

# --- Upload ---

UPLOAD_ATTEMPTS_TOTAL = Counter(
    "tsi_upload_attempts_total",
    "Bulk loader calls by outcome",
    ["outcome"],  # success | failure
)

UPLOADS_TOTAL = Counter(
    "tsi_uploads_total",
    "Staging files reaching a terminal state",
    ["result"],  # succeeded | permanently_failed | missing | abandoned
)

UPLOAD_LATENCY_SECONDS = Histogram(
    "tsi_upload_latency_seconds",
    "Latency of a single bulk loader call",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120],
)

INGESTION_QUEUE_FILES = Gauge(
    "tsi_ingestion_queue_files",
    "Staging files waiting for upload",
    ["pipeline"],
)

INFLIGHT_CORRELATION_IDS = Gauge(
    "tsi_inflight_correlation_ids",
    "Correlation ids held by the idempotency cache",
    ["pipeline"],
)


class MetricsRegistry:
    """Centralized access to all pipeline metrics."""

    records_enqueued_total = RECORDS_ENQUEUED_TOTAL
    flushes_total = FLUSHES_TOTAL
    staged_records_total = STAGED_RECORDS_TOTAL
    staged_files_total = STAGED_FILES_TOTAL
    buffer_records = BUFFER_RECORDS
    upload_attempts_total = UPLOAD_ATTEMPTS_TOTAL
    uploads_total = UPLOADS_TOTAL
    upload_latency_seconds = UPLOAD_LATENCY_SECONDS
    ingestion_queue_files = INGESTION_QUEUE_FILES
    inflight_correlation_ids = INFLIGHT_CORRELATION_IDS


# Singleton instance
metrics_registry = MetricsRegistry()
