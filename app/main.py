from __future__ import annotations

from fastapi import FastAPI

from app.api import router
from app.config import HTTPListenerConfig
from listeners.base import PointsWriter


def create_app(
    writer: PointsWriter,
    listener_config: HTTPListenerConfig,
    name: str = "http",
) -> FastAPI:
    """Build the line protocol ingestion app bound to ``writer``."""
    app = FastAPI(
        title="InfluxDB Gateway",
        description="Line protocol ingestion endpoint forwarding to the gateway writer.",
        version="0.1.0",
    )
    app.state.writer = writer
    app.state.listener_config = listener_config
    app.state.listener_name = name
    app.include_router(router)
    return app
