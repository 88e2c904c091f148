"""
HTTP intake service.

POST /ingest accepts a Prometheus remote-write body (snappy-compressed
protobuf) or a JSON WriteRequest (optionally gzip-compressed) and returns once
every contained time series is in the pipeline's memory buffer.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger
from prometheus_client import make_asgi_app

from ..config import Settings, build_loader, get_settings
from ..codec import decode_write_request
from ..errors import DecodeError, PipelineClosedError
from ..pipeline import IngestionPipeline

SERVICE_NAME = "ts-ingest"


def create_app(
    pipeline: Optional[IngestionPipeline] = None, settings: Optional[Settings] = None
) -> FastAPI:
    """Build the FastAPI app; the pipeline is started/stopped by the lifespan."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        p = pipeline
        if p is None:
            p = IngestionPipeline(
                build_loader(settings),
                settings.destination(),
                settings.pipeline_config(),
            )
        app.state.pipeline = p
        await p.start()
        try:
            yield
        finally:
            await p.stop(drain=True)

    app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)
    app.mount("/metrics", make_asgi_app())

    async def _ingest(request: Request) -> dict:
        body = await request.body()
        try:
            records = decode_write_request(
                body,
                request.headers.get("content-encoding"),
                request.headers.get("content-type"),
            )
        except DecodeError as e:
            logger.warning(f"Rejected intake payload ({len(body)} bytes): {e}")
            raise HTTPException(status_code=400, detail=str(e))

        p: IngestionPipeline = request.app.state.pipeline
        try:
            accepted = await p.submit_many(records)
        except PipelineClosedError as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"accepted": accepted}

    app.add_api_route("/ingest", _ingest, methods=["POST"], name="ingest")
    # route name used by existing agent configurations
    app.add_api_route("/KustoIngest", _ingest, methods=["POST"], name="ingest_legacy")

    @app.get("/healthz")
    async def healthz(request: Request):
        p: IngestionPipeline = request.app.state.pipeline
        h = p.health()
        body = {"service": SERVICE_NAME, "state": "healthy" if h.healthy else "degraded"}
        body.update(asdict(h))
        return JSONResponse(body, status_code=200 if h.healthy else 503)

    return app
