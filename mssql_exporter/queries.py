"""Query definitions - SQL statements and their row -> gauge projections.

Each definition pairs one SQL statement with the gauges it feeds and a
projection. Raw rows are parsed into the definition's row record before the
projection runs, so a column count or type mismatch is reported at the
boundary instead of inside the projection.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Type

from pydantic import BaseModel, ValidationError, field_validator

from mssql_exporter.exceptions import MissingColumn, MissingRow, RowShapeError
from mssql_exporter.observability.metrics import GaugeHandle, MetricDescriptor

logger = logging.getLogger(__name__)

Projection = Callable[[List[Any], Mapping[str, GaugeHandle]], None]


def _cell_value(cell: Any) -> Any:
    # tedious-style cells carry the value under "value"
    if isinstance(cell, Mapping) and "value" in cell:
        return cell["value"]
    return cell


class QueryDefinition:
    """One SQL statement, the gauges it feeds, and its projection."""

    def __init__(
        self,
        name: str,
        query: str,
        metrics: Mapping[str, MetricDescriptor],
        row_model: Type[BaseModel],
        collect: Projection,
    ):
        self.name = name
        self.query = query
        self.metrics: Dict[str, MetricDescriptor] = dict(metrics)
        self.row_model = row_model
        self._collect = collect

    def __repr__(self) -> str:
        return f"QueryDefinition({self.name!r}, metrics={list(self.metrics)})"

    @property
    def columns(self) -> List[str]:
        return list(self.row_model.model_fields)

    def parse_rows(self, rows: Iterable[Sequence[Any]]) -> List[BaseModel]:
        """Convert positional result rows into row records.

        Raises:
            MissingColumn: a row has fewer cells than the record has fields
            RowShapeError: a row has extra cells, or a cell fails validation
        """
        columns = self.columns
        records = []
        for row in rows:
            cells = [_cell_value(cell) for cell in row]
            if len(cells) < len(columns):
                raise MissingColumn(self.name, len(columns), len(cells))
            if len(cells) > len(columns):
                raise RowShapeError(self.name, len(columns), len(cells))
            try:
                records.append(self.row_model(**dict(zip(columns, cells))))
            except ValidationError as exc:
                raise RowShapeError(
                    self.name, columns, cells, f"Query '{self.name}' returned an invalid row: {exc}"
                ) from exc
        return records

    def collect(self, records: List[Any], gauges: Mapping[str, GaugeHandle]) -> None:
        """Run the projection over already parsed records."""
        self._collect(records, gauges)

    def apply(self, rows: Iterable[Sequence[Any]], gauges: Mapping[str, GaugeHandle]) -> None:
        """Parse raw rows, then project them. Nothing is set if parsing fails."""
        self.collect(self.parse_rows(rows), gauges)


def _database_name(value: Optional[str]) -> str:
    # DB_NAME() is NULL for sessions not bound to a database
    return "" if value is None else value


# mssql_instance_local_time

class LocalTimeRow(BaseModel):
    seconds: float


def collect_local_time(rows: List[LocalTimeRow], metrics: Mapping[str, GaugeHandle]) -> None:
    if not rows:
        raise MissingRow("mssql_instance_local_time", 0)
    seconds = rows[0].seconds
    logger.debug(f"Fetch current time {seconds}")
    metrics["mssql_instance_local_time"].set(seconds)


mssql_instance_local_time = QueryDefinition(
    name="mssql_instance_local_time",
    query="SELECT DATEDIFF(second, '19700101', GETUTCDATE())",
    metrics={
        "mssql_instance_local_time": MetricDescriptor(
            "mssql_instance_local_time",
            "Number of seconds since epoch on local instance",
        ),
    },
    row_model=LocalTimeRow,
    collect=collect_local_time,
)


# mssql_connections

class ConnectionsRow(BaseModel):
    database: str
    sessions: float

    @field_validator("database", mode="before")
    @classmethod
    def null_database_as_empty(cls, value: Optional[str]) -> str:
        return _database_name(value)


def collect_connections(rows: List[ConnectionsRow], metrics: Mapping[str, GaugeHandle]) -> None:
    for row in rows:
        logger.debug(f"Fetch number of connections for database {row.database}: {row.sessions}")
        metrics["mssql_connections"].set({"database": row.database, "state": "current"}, row.sessions)


mssql_connections = QueryDefinition(
    name="mssql_connections",
    query="""SELECT DB_NAME(sP.dbid)
        , COUNT(sP.spid)
FROM sys.sysprocesses sP
GROUP BY DB_NAME(sP.dbid)""",
    metrics={
        "mssql_connections": MetricDescriptor(
            "mssql_connections",
            "Number of active connections",
            ["database", "state"],
        ),
    },
    row_model=ConnectionsRow,
    collect=collect_connections,
)


# mssql_io_stall

class IoStallRow(BaseModel):
    database: str
    read_ms: float
    write_ms: float
    stall_ms: float
    queued_read_ms: float
    queued_write_ms: float

    @field_validator("database", mode="before")
    @classmethod
    def null_database_as_empty(cls, value: Optional[str]) -> str:
        return _database_name(value)


IO_STALL_TYPES = (
    ("read", "read_ms"),
    ("write", "write_ms"),
    ("queued_read", "queued_read_ms"),
    ("queued_write", "queued_write_ms"),
)


def collect_io_stall(rows: List[IoStallRow], metrics: Mapping[str, GaugeHandle]) -> None:
    for row in rows:
        logger.debug(f"Fetch number of stalls for database {row.database}")
        metrics["mssql_io_stall_total"].set({"database": row.database}, row.stall_ms)
        for stall_type, field in IO_STALL_TYPES:
            metrics["mssql_io_stall"].set(
                {"database": row.database, "type": stall_type}, getattr(row, field)
            )


mssql_io_stall = QueryDefinition(
    name="mssql_io_stall",
    query="""SELECT
cast(DB_Name(a.database_id) as varchar) as name,
    max(io_stall_read_ms),
    max(io_stall_write_ms),
    max(io_stall),
    max(io_stall_queued_read_ms),
    max(io_stall_queued_write_ms)
FROM
sys.dm_io_virtual_file_stats(null, null) a
INNER JOIN sys.master_files b ON a.database_id = b.database_id and a.file_id = b.file_id
group by a.database_id""",
    metrics={
        "mssql_io_stall": MetricDescriptor(
            "mssql_io_stall",
            "Wait time (ms) of stall since last restart",
            ["database", "type"],
        ),
        "mssql_io_stall_total": MetricDescriptor(
            "mssql_io_stall_total",
            "Wait time (ms) of stall since last restart",
            ["database"],
        ),
    },
    row_model=IoStallRow,
    collect=collect_io_stall,
)


DEFAULT_DEFINITIONS = [
    mssql_instance_local_time,
    mssql_connections,
    mssql_io_stall,
]
