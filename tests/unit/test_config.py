"""
Unit tests for environment-based settings.
"""

from pathlib import Path

import pytest

from ts_ingest.config import Settings, build_loader
from ts_ingest.loaders import KustoBulkLoader, LocalDirectoryLoader


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("TSI_MAX_BATCH_SIZE", "250")
    monkeypatch.setenv("TSI_MAX_BATCH_INTERVAL_SECONDS", "2.5")
    monkeypatch.setenv("TSI_MAX_RETRIES", "5")
    monkeypatch.setenv("TSI_MS_BETWEEN_RETRIES", "100")
    monkeypatch.setenv("TSI_STAGING_DIR", str(tmp_path / "stage"))
    monkeypatch.setenv("TSI_TABLE_NAME", "Prom")
    monkeypatch.setenv("TSI_MAPPING_NAME", "prom_map")

    s = Settings(_env_file=None)
    cfg = s.pipeline_config()
    dest = s.destination()

    assert cfg.max_batch_size == 250
    assert cfg.max_batch_interval_seconds == 2.5
    assert cfg.max_retries == 5
    assert cfg.ms_between_retries == 100
    assert cfg.staging_dir == Path(tmp_path / "stage")
    assert dest.table == "Prom"
    assert dest.mapping_name == "prom_map"
    assert dest.data_format == "multijson"


def test_invalid_retry_budget_rejected(monkeypatch):
    monkeypatch.setenv("TSI_MAX_RETRIES", "0")
    with pytest.raises(ValueError):
        Settings(_env_file=None).pipeline_config()


def test_build_local_loader(tmp_path):
    s = Settings(_env_file=None, loader="local", local_target_dir=tmp_path / "out")
    loader = build_loader(s)
    assert isinstance(loader, LocalDirectoryLoader)
    assert loader.target_dir == tmp_path / "out"


def test_build_kusto_loader_requires_cluster():
    with pytest.raises(ValueError, match="CLUSTER_NAME"):
        build_loader(Settings(_env_file=None, loader="kusto"))


def test_build_kusto_loader():
    loader = build_loader(Settings(_env_file=None, loader="kusto", cluster_name="prod.eastus"))
    assert isinstance(loader, KustoBulkLoader)
    assert loader.cluster_uri == "https://ingest-prod.eastus.kusto.windows.net"


def test_masked_hides_secrets():
    s = Settings(_env_file=None, client_secret="s3cret", access_token="tok")
    data = s.masked()
    assert data["client_secret"] == "***"
    assert data["access_token"] == "***"
    assert data["tenant_id"] is None
