from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger

from .config import Settings, build_loader, get_settings
from .log import setup_logging
from .pipeline import (
    IdempotencyCache,
    IngestionQueue,
    IngestionWorker,
    UploadState,
    recover_staging_dir,
)

app = typer.Typer(help="ts-ingest operational CLI (serve, replay, config)")


def staging_dir_opt():
    return typer.Option(None, "--staging-dir", help="Override TSI_STAGING_DIR")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default TSI_APP_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (default TSI_APP_PORT)"),
    staging_dir: Optional[Path] = staging_dir_opt(),
):
    """Run the HTTP intake service."""
    import uvicorn

    from .service import create_app

    settings = get_settings()
    if staging_dir is not None:
        settings = settings.model_copy(update={"staging_dir": staging_dir})
    setup_logging(settings.log_level)
    logger.info(f"Starting intake service on {host or settings.app_host}:{port or settings.app_port}")
    uvicorn.run(
        create_app(settings=settings),
        host=host or settings.app_host,
        port=port or settings.app_port,
        log_level=settings.log_level.lower(),
    )


async def _replay(settings: Settings) -> dict:
    loader = build_loader(settings)
    cfg = settings.pipeline_config()
    worker = IngestionWorker(
        queue=IngestionQueue(),
        loader=loader,
        destination=settings.destination(),
        cache=IdempotencyCache(),
        stop_event=asyncio.Event(),
        max_retries=cfg.max_retries,
        ms_between_retries=cfg.ms_between_retries,
        worker_id="replay",
    )
    async with loader:
        for path in recover_staging_dir(cfg.staging_dir):
            await worker.process(path)
    return {state.value: worker.results.get(state, 0) for state in UploadState if state.terminal}


@app.command()
def replay(staging_dir: Optional[Path] = staging_dir_opt()):
    """Upload every staging file left in the staging directory, then exit.

    The intake service using this staging directory must be stopped first:
    replay discards unfinished temp files and uploads files the running
    service would also pick up.
    """
    settings = get_settings()
    if staging_dir is not None:
        settings = settings.model_copy(update={"staging_dir": staging_dir})
    setup_logging(settings.log_level)
    try:
        summary = asyncio.run(_replay(settings))
    except Exception as e:
        logger.error(f"Replay failed: {e}")
        sys.exit(1)
    typer.echo(json.dumps(summary, indent=2))
    if summary.get(UploadState.PERMANENTLY_FAILED.value):
        sys.exit(2)


@app.command("show-config")
def show_config():
    """Print effective settings as JSON (secrets masked)."""
    typer.echo(json.dumps(get_settings().masked(), indent=2, default=str))


if __name__ == "__main__":
    app()
