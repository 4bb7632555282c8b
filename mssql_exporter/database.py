"""Database engine construction and the query boundary."""
from typing import Any, List, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Connection, Engine, make_url

from mssql_exporter.config import ExporterSettings

DRIVER = "mssql+pymssql"


def build_database_url(settings: ExporterSettings) -> URL:
    """DATABASE_URL when set, otherwise a pymssql URL from the individual settings."""
    if settings.database_url:
        return make_url(settings.database_url)
    return URL.create(
        DRIVER,
        username=settings.username,
        password=settings.password or None,
        host=settings.server,
        port=settings.port,
        database=settings.database,
    )


def create_db_engine(settings: ExporterSettings) -> Engine:
    url = build_database_url(settings)
    connect_args = {}
    if url.drivername == DRIVER:
        connect_args["login_timeout"] = settings.connect_timeout
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


def fetch_rows(connection: Connection, sql: str) -> List[Sequence[Any]]:
    """Run one statement and return every row, positionally indexable."""
    return list(connection.execute(text(sql)).fetchall())
