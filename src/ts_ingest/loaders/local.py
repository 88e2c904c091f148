"""
Local filesystem bulk loader.

Stands in for the analytics sink during development and tests. Files land as:
    {target_dir}/{database}/{table}/{correlation_id}.json
"""

from __future__ import annotations

import asyncio
import os
import shutil
from pathlib import Path
from uuid import UUID

from ..pipeline.types import BulkLoader, Destination, IngestResult


class LocalDirectoryLoader(BulkLoader):
    """Copies staging files into a directory keyed by correlation id.

    A correlation id that is already present is the same logical upload and
    is not applied twice.
    """

    def __init__(self, target_dir: str | Path = ".ts-ingest/loaded"):
        self.target_dir = Path(target_dir)
        self.target_dir.mkdir(parents=True, exist_ok=True)

    def target_for(self, destination: Destination, correlation_id: UUID) -> Path:
        return self.target_dir / destination.database / destination.table / f"{correlation_id}.json"

    async def ingest(
        self,
        file_path: Path,
        destination: Destination,
        correlation_id: UUID,
        *,
        delete_source_on_success: bool = True,
    ) -> IngestResult:
        return await asyncio.to_thread(
            self._ingest, Path(file_path), destination, correlation_id, delete_source_on_success
        )

    def _ingest(
        self, src: Path, destination: Destination, correlation_id: UUID, delete_source: bool
    ) -> IngestResult:
        target = self.target_for(destination, correlation_id)
        if target.exists():
            if delete_source:
                src.unlink(missing_ok=True)
            return IngestResult(correlation_id, status="duplicate", details=str(target))

        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".part")
        shutil.copyfile(src, tmp)
        os.replace(tmp, target)
        if delete_source:
            src.unlink()
        return IngestResult(correlation_id, status="completed", details=str(target))
