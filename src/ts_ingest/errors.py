"""
Custom exceptions for ts-ingest.

Provides structured error handling for the intake, staging and upload stages.
"""


class IngestError(Exception):
    """Base error for the ingestion pipeline."""

    pass


class DecodeError(IngestError):
    """Malformed intake payload; nothing from the request was enqueued."""

    pass


class StagingWriteError(IngestError):
    """Serializing or writing a staging file failed; the drained batch is lost."""

    pass


class PipelineClosedError(IngestError):
    """Records submitted to a pipeline that has been stopped."""

    pass


class UploadError(IngestError):
    """Bulk loader failed to ingest a staging file."""

    pass


class RetryableUploadError(UploadError):
    """Network, throttling or service-busy failures."""

    pass


class PermanentUploadError(UploadError):
    """Schema or format failures that will not succeed on retry."""

    pass


_TRANSIENT_HINTS = ("timeout", "timed out", "throttl", "busy", "temporar", "unavailable", "429")


def map_loader_error(e: Exception) -> UploadError:
    if isinstance(e, UploadError):
        return e
    if isinstance(e, (TimeoutError, ConnectionError)):
        return RetryableUploadError(str(e))
    msg = str(e).lower()
    if any(hint in msg for hint in _TRANSIENT_HINTS):
        return RetryableUploadError(str(e))
    # azure-kusto-ingest raises KustoServiceError / KustoClientError
    name = type(e).__name__
    if name in ("KustoThrottlingError", "KustoServiceError"):
        return RetryableUploadError(str(e))
    if name in ("KustoClientError", "KustoMissingMappingError", "KustoMappingError"):
        return PermanentUploadError(str(e))
    return UploadError(str(e))
