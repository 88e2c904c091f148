"""
Azure Data Explorer (Kusto) bulk loader using queued ingestion.

The correlation id is passed as the file descriptor's source id, so the
service recognizes repeated submissions of the same staging file.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional
from uuid import UUID

from loguru import logger

from ..pipeline.types import BulkLoader, Destination, IngestResult


def _kusto():
    """Lazy import of the Kusto SDK (only needed if this loader is used)."""
    try:
        from azure.kusto.data import KustoConnectionStringBuilder
        from azure.kusto.data.data_format import DataFormat, IngestionMappingKind
        from azure.kusto.ingest import FileDescriptor, IngestionProperties, QueuedIngestClient
    except ImportError:
        raise ImportError(
            "azure-kusto-ingest is required for KustoBulkLoader. "
            "Install with: pip install 'ts-ingest[kusto]'"
        )
    return (
        KustoConnectionStringBuilder,
        DataFormat,
        IngestionMappingKind,
        FileDescriptor,
        IngestionProperties,
        QueuedIngestClient,
    )


def ingest_uri(cluster_name: str) -> str:
    if cluster_name.startswith("https://"):
        return cluster_name
    return f"https://ingest-{cluster_name}.kusto.windows.net"


class KustoBulkLoader(BulkLoader):
    """Queued ingestion of staging files into a Kusto table.

    Authentication, in order of precedence:
    1. managed identity (system-assigned, or user-assigned when ``app_id`` is set)
    2. user access token
    3. AAD application key (``client_id``/``client_secret``/``tenant_id``)
    """

    def __init__(
        self,
        cluster_name: str,
        *,
        use_managed_identity: bool = False,
        app_id: Optional[str] = None,
        access_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        tenant_id: Optional[str] = None,
        client: Any = None,
    ):
        self.cluster_uri = ingest_uri(cluster_name)
        self._auth = dict(
            use_managed_identity=use_managed_identity,
            app_id=app_id,
            access_token=access_token,
            client_id=client_id,
            client_secret=client_secret,
            tenant_id=tenant_id,
        )
        self._client = client

    def _build_kcsb(self):
        kcsb_cls = _kusto()[0]
        a = self._auth
        if a["use_managed_identity"]:
            if a["app_id"]:
                kcsb = kcsb_cls.with_aad_managed_service_identity_authentication(
                    self.cluster_uri, client_id=a["app_id"]
                )
            else:
                kcsb = kcsb_cls.with_aad_managed_service_identity_authentication(self.cluster_uri)
        elif a["access_token"]:
            kcsb = kcsb_cls.with_aad_user_token_authentication(self.cluster_uri, a["access_token"])
        else:
            if not (a["client_id"] and a["client_secret"] and a["tenant_id"]):
                raise ValueError(
                    "client_id, client_secret and tenant_id are required for "
                    "application key authentication"
                )
            kcsb = kcsb_cls.with_aad_application_key_authentication(
                self.cluster_uri, a["client_id"], a["client_secret"], a["tenant_id"]
            )
        return kcsb

    @property
    def client(self):
        """Lazy initialize the queued ingest client."""
        if self._client is None:
            queued_client_cls = _kusto()[5]
            self._client = queued_client_cls(self._build_kcsb())
            logger.debug(f"Kusto queued ingest client created for {self.cluster_uri}")
        return self._client

    def ingestion_properties(self, destination: Destination):
        _, data_format, mapping_kind, _, props_cls, _ = _kusto()
        props = props_cls(
            database=destination.database,
            table=destination.table,
            data_format=data_format[destination.data_format.upper()],
        )
        if destination.mapping_name:
            props.ingestion_mapping_reference = destination.mapping_name
            props.ingestion_mapping_kind = mapping_kind.JSON
        return props

    async def ingest(
        self,
        file_path: Path,
        destination: Destination,
        correlation_id: UUID,
        *,
        delete_source_on_success: bool = True,
    ) -> IngestResult:
        # the SDK is blocking; keep it off the event loop serving intake
        return await asyncio.to_thread(
            self._ingest, Path(file_path), destination, correlation_id, delete_source_on_success
        )

    def _ingest(
        self, path: Path, destination: Destination, correlation_id: UUID, delete_source: bool
    ) -> IngestResult:
        file_descriptor_cls = _kusto()[3]
        descriptor = file_descriptor_cls(
            str(path), size=path.stat().st_size, source_id=correlation_id
        )
        result = self.client.ingest_from_file(
            descriptor, ingestion_properties=self.ingestion_properties(destination)
        )
        # queued ingestion has uploaded the blob; the local copy is no longer needed
        if delete_source:
            path.unlink(missing_ok=True)
        status = getattr(getattr(result, "status", None), "value", None) or "queued"
        return IngestResult(correlation_id, status=str(status).lower())

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await asyncio.to_thread(self._client.close)
        self._client = None
