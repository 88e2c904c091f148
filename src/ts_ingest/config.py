import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .pipeline.types import BulkLoader, Destination, PipelineConfig


class Settings(BaseSettings):
    """Environment-driven settings (prefix ``TSI_``, optional ``.env``)."""

    model_config = SettingsConfigDict(env_prefix="TSI_", env_file=".env", case_sensitive=False)

    # batching
    max_batch_size: int = 1000
    max_batch_interval_seconds: float = 10.0
    max_retries: int = 3
    ms_between_retries: int = 5000
    queue_poll_seconds: float = 1.0
    staging_dir: Path = Path(tempfile.gettempdir()) / "ts-ingest"
    recover_on_start: bool = True

    # sink
    loader: Literal["local", "kusto"] = "local"
    local_target_dir: Path = Path(".ts-ingest/loaded")
    cluster_name: Optional[str] = None
    db_name: str = "metrics"
    table_name: str = "TimeSeries"
    mapping_name: Optional[str] = None
    use_managed_identity: bool = False
    app_id: Optional[str] = None
    access_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    tenant_id: Optional[str] = None

    # service
    app_host: str = "0.0.0.0"
    app_port: int = 8080
    log_level: str = "INFO"

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            max_batch_size=self.max_batch_size,
            max_batch_interval_seconds=self.max_batch_interval_seconds,
            max_retries=self.max_retries,
            ms_between_retries=self.ms_between_retries,
            queue_poll_seconds=self.queue_poll_seconds,
            staging_dir=self.staging_dir,
            recover_on_start=self.recover_on_start,
        )

    def destination(self) -> Destination:
        return Destination(
            database=self.db_name, table=self.table_name, mapping_name=self.mapping_name
        )

    def masked(self) -> dict:
        """Settings as a JSON-safe dict with secrets hidden."""
        data = self.model_dump(mode="json")
        for key in ("access_token", "client_secret"):
            if data.get(key):
                data[key] = "***"
        return data


def build_loader(settings: Settings) -> BulkLoader:
    if settings.loader == "kusto":
        from .loaders.kusto import KustoBulkLoader

        if not settings.cluster_name:
            raise ValueError("TSI_CLUSTER_NAME is required when TSI_LOADER=kusto")
        return KustoBulkLoader(
            settings.cluster_name,
            use_managed_identity=settings.use_managed_identity,
            app_id=settings.app_id,
            access_token=settings.access_token,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            tenant_id=settings.tenant_id,
        )

    from .loaders.local import LocalDirectoryLoader

    return LocalDirectoryLoader(settings.local_target_dir)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
