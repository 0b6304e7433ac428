"""FastAPI application - exporter status and backlog maintenance.

The exporter itself runs inside the app lifespan; the HTTP surface only
reports on it and lets an operator flush the backlog on demand.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from . import __version__
from .bus.base import DataBus
from .bus.memory import InMemoryBus
from .bus.signalk import SignalKBus
from .config import Config
from .exporter import WebhookExporter


logger = logging.getLogger(__name__)


# Response models
class HealthResponse(BaseModel):
    status: str
    version: str
    connected: bool
    backlog_size: int
    stats: dict[str, Any]


class SampleResponse(BaseModel):
    metric: str
    path: str
    value: Any = None
    unit: str | None = None
    observed: bool


class SamplesResponse(BaseModel):
    samples: list[SampleResponse]


class BacklogResponse(BaseModel):
    size: int
    entries: list[dict[str, Any]]


class FlushResponse(BaseModel):
    attempted: int
    delivered: int
    remaining: int
    written: bool
    evicted: int


def create_bus(config: Config) -> DataBus:
    """Create the data bus named in the config."""
    if config.bus.type == "memory":
        return InMemoryBus()
    return SignalKBus(
        base_url=config.bus.base_url,
        timeout=config.bus.timeout_seconds,
    )


def create_app(
    exporter: WebhookExporter | None = None,
    config: Config | None = None,
    schedule: bool = True,
) -> FastAPI:
    """
    Build the status app.

    Without arguments the config is read from MSP_WEBHOOK_CONFIG at
    startup and the bus is created from it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting MSP webhook service...")

        app_config = config or Config.from_env()
        app_exporter = exporter or WebhookExporter(create_bus(app_config))
        await app_exporter.start(app_config, schedule=schedule)
        app.state.exporter = app_exporter

        logger.info("MSP webhook service started")

        yield

        logger.info("Shutting down MSP webhook service...")
        await app_exporter.stop()
        app.state.exporter = None
        logger.info("MSP webhook service stopped")

    app = FastAPI(
        title="MSP Webhook Exporter",
        description="Sends vessel data to a webhook and keeps an offline backlog of failed sends.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.exporter = None

    def running_exporter() -> WebhookExporter:
        current = app.state.exporter
        if current is None or not current.running:
            raise HTTPException(status_code=503, detail="Exporter not running")
        return current

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Connectivity, backlog size and component stats."""
        current = running_exporter()
        status = current.status()
        return HealthResponse(
            status="healthy" if status["connected"] else "degraded",
            version=__version__,
            connected=status["connected"],
            backlog_size=status["backlog_size"],
            stats=status,
        )

    @app.get("/samples", response_model=SamplesResponse)
    async def samples():
        """Latest observation for every enabled metric."""
        ctx = running_exporter().context
        observed = ctx.store.observed()
        result = []
        for metric in ctx.metrics:
            observation = ctx.store.read(metric)
            result.append(SampleResponse(
                metric=metric.value,
                path=metric.path,
                value=observation.value if observation else None,
                unit=observation.unit if observation else None,
                observed=metric in observed,
            ))
        return SamplesResponse(samples=result)

    @app.get("/backlog", response_model=BacklogResponse)
    async def backlog():
        """Records waiting to be resent."""
        entries = running_exporter().context.backlog.load()
        return BacklogResponse(size=len(entries), entries=entries)

    @app.post("/backlog/flush", response_model=FlushResponse)
    async def flush_backlog():
        """Try to resend the backlog now."""
        outcome = await running_exporter().flush_backlog()
        return FlushResponse(**outcome.to_dict())

    @app.get("/")
    async def root():
        return {
            "service": "MSP Webhook Exporter",
            "version": __version__,
            "endpoints": {
                "/health": "Connectivity, backlog size and stats",
                "/samples": "Latest observation per enabled metric",
                "/backlog": "Records waiting to be resent",
                "/backlog/flush": "POST - Resend the backlog now",
            },
        }

    return app


def run(config_path: str | None = None, host: str | None = None, port: int | None = None):
    """Run the service with uvicorn."""
    import uvicorn

    config = Config.from_file(config_path) if config_path else Config.from_env()

    logging.basicConfig(
        level=config.logging.level,
        format=config.logging.format,
    )

    uvicorn.run(
        create_app(config=config),
        host=host or config.server.host,
        port=port or config.server.port,
    )


if __name__ == "__main__":
    run()
