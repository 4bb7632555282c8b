"""MSSQL exporter - FastAPI application serving the metrics endpoint"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST
from sqlalchemy.engine import Engine

from mssql_exporter import __version__
from mssql_exporter.config import ExporterSettings
from mssql_exporter.database import create_db_engine
from mssql_exporter.observability.collector import Collector, ScrapeResult, metrics_collector_loop
from mssql_exporter.registry import Registry
from mssql_exporter.schemas import HealthResponse

logger = logging.getLogger(__name__)

MAX_ERROR_HEADER = 1024


def _header_value(message: str) -> str:
    # header values must be a single latin-1 line
    flat = " ".join(message.split())[:MAX_ERROR_HEADER]
    return flat.encode("latin-1", errors="replace").decode("latin-1")


def render_exposition(registry: Registry, result: Optional[ScrapeResult]) -> Response:
    """Full exposition after a good pass, only the health series otherwise."""
    headers = {}
    if result is not None and result.errors:
        headers["X-Error"] = _header_value(result.message)

    if result is not None and result.ok:
        body = registry.render()
    else:
        body = registry.render_health()
    return Response(body, media_type=CONTENT_TYPE_LATEST, headers=headers)


def create_app(
    settings: Optional[ExporterSettings] = None,
    registry: Optional[Registry] = None,
    engine: Optional[Engine] = None,
) -> FastAPI:
    """Build the exporter application.

    The registry and engine are created here unless supplied, and shared by
    the collector and the metrics endpoint.
    """
    settings = settings or ExporterSettings.from_env()
    registry = registry or Registry()
    engine = engine or create_db_engine(settings)
    collector = Collector(registry, engine, settings.failure_policy)
    background = settings.collect_interval > 0
    started_at = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info(
            f"Starting MSSQL exporter v{__version__} "
            f"(target={settings.target}, failure_policy={settings.failure_policy.value})"
        )
        task = None
        if background:
            task = asyncio.create_task(metrics_collector_loop(collector, settings.collect_interval))

        yield

        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        engine.dispose()
        logger.info("Shutting down MSSQL exporter")

    app = FastAPI(
        title="MSSQL Exporter",
        description="Prometheus exporter for Microsoft SQL Server",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.collector = collector

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "MSSQL exporter - metrics at /metrics\n"

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint. Performs no database I/O."""
        last = collector.last_result
        return HealthResponse(
            status="ok",
            version=__version__,
            uptime_seconds=int(time.time() - started_at),
            now=datetime.now(timezone.utc),
            last_scrape_ok=last.ok if last is not None else None,
        )

    @app.get("/metrics")
    def metrics():
        """Prometheus metrics endpoint.

        Collects on every request unless a background collection interval is
        configured, in which case the last pass is rendered.
        """
        if background:
            result = collector.last_result
        else:
            result = collector.collect_once()
        return render_exposition(registry, result)

    return app
