"""Metrics collector for the MSSQL exporter.

Runs every query definition of the registry against the database and feeds
the rows to the definition's projection.

Design:
- One connection per collection pass, definitions run sequentially
- Rows are fetched and parsed before any gauge is touched
- The failure policy decides whether one failing definition aborts the pass
"""
import asyncio
import logging
import time
from typing import List, Optional, Tuple, Union

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from mssql_exporter.config import FailurePolicy
from mssql_exporter.database import fetch_rows
from mssql_exporter.exceptions import CollectionError, ScrapeError
from mssql_exporter.queries import QueryDefinition
from mssql_exporter.registry import Registry

logger = logging.getLogger(__name__)

CONNECTION = "connection"


class ScrapeResult:
    """Outcome of one collection pass."""

    def __init__(self, ok: bool, errors: List[Tuple[str, BaseException]], duration_seconds: float):
        self.ok = ok
        self.errors = errors
        self.duration_seconds = duration_seconds

    def __repr__(self) -> str:
        return f"ScrapeResult(ok={self.ok}, errors={[name for name, _ in self.errors]})"

    @property
    def error(self) -> Optional[ScrapeError]:
        return ScrapeError(self.errors) if self.errors else None

    @property
    def message(self) -> str:
        """Short error summary for the X-Error response header."""
        return "; ".join(f"{name}: {exc}" for name, exc in self.errors)


class Collector:
    """Drives one registry against one database engine."""

    def __init__(
        self,
        registry: Registry,
        engine: Engine,
        failure_policy: Union[FailurePolicy, str] = FailurePolicy.SCRAPE,
    ):
        self.registry = registry
        self.engine = engine
        self.failure_policy = FailurePolicy(failure_policy)
        self.last_result: Optional[ScrapeResult] = None

    def collect_once(self) -> ScrapeResult:
        """Execute all query definitions in a single connection.

        Sets `up` to 1 when the pass counts as successful, 0 otherwise.
        Errors other than database and row-shape errors propagate after
        `up` has been set to 0.
        """
        start = time.monotonic()
        errors: List[Tuple[str, BaseException]] = []
        ok = False
        try:
            ok = self._run(errors)
        except Exception:
            self._finish(False, errors, start)
            raise
        return self._finish(ok, errors, start)

    def _run(self, errors: List[Tuple[str, BaseException]]) -> bool:
        try:
            connection = self.engine.connect()
        except SQLAlchemyError as e:
            logger.warning(f"Cannot connect to database: {e}")
            errors.append((CONNECTION, e))
            return False

        collected = 0
        with connection:
            for definition in self.registry.definitions:
                try:
                    self._collect_definition(connection, definition)
                    collected += 1
                except (SQLAlchemyError, CollectionError) as e:
                    errors.append((definition.name, e))
                    self.registry.exporter_metrics.scrape_errors.labels(query=definition.name).inc()
                    if self.failure_policy is FailurePolicy.SCRAPE:
                        logger.error(f"Query definition {definition.name} failed, aborting scrape: {e}")
                        return False
                    logger.warning(f"Query definition {definition.name} failed, skipping: {e}")
                    try:
                        connection.rollback()
                    except SQLAlchemyError as rollback_error:
                        logger.warning(f"Connection lost after {definition.name} failed: {rollback_error}")
                        errors.append((CONNECTION, rollback_error))
                        return False

        # a pass where every definition failed is a failed scrape
        return collected > 0 or not self.registry.definitions

    def _collect_definition(self, connection: Connection, definition: QueryDefinition) -> None:
        rows = fetch_rows(connection, definition.query)
        records = definition.parse_rows(rows)
        definition.collect(records, self.registry.gauges_for(definition))
        logger.debug(f"Collected {definition.name} ({len(records)} rows)")

    def _finish(self, ok: bool, errors: List[Tuple[str, BaseException]], start: float) -> ScrapeResult:
        duration = time.monotonic() - start
        self.registry.up.set(1 if ok else 0)
        self.registry.exporter_metrics.scrape_duration.set(duration)
        result = ScrapeResult(ok, errors, duration)
        self.last_result = result
        logger.debug(f"Collection pass finished in {duration:.3f}s: {result}")
        return result


async def metrics_collector_loop(collector: Collector, interval_seconds: float = 15):
    """Periodic collection, used instead of per-scrape collection.

    Each pass runs in a worker thread so the event loop keeps serving
    scrapes of the last known state.

    Args:
        collector: Collector to drive
        interval_seconds: Time between collection passes
    """
    logger.info(f"Starting metrics collector (interval={interval_seconds}s)")

    while True:
        try:
            await asyncio.to_thread(collector.collect_once)
        except Exception as e:
            logger.exception(f"Metrics collector failed: {e}")
        await asyncio.sleep(interval_seconds)
