"""Exporter configuration, read from environment variables."""
import enum
import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class FailurePolicy(str, enum.Enum):
    """What a failing query definition does to the rest of a collection pass."""
    SCRAPE = "scrape"  # abort the pass, up=0
    QUERY = "query"    # skip the definition, keep going


# field name -> environment variable
ENV_VARS = {
    "server": "SERVER",
    "port": "PORT",
    "username": "USERNAME",
    "password": "PASSWORD",
    "database": "DATABASE",
    "database_url": "DATABASE_URL",
    "connect_timeout": "CONNECT_TIMEOUT",
    "expose": "EXPOSE",
    "host": "EXPORTER_HOST",
    "failure_policy": "FAILURE_POLICY",
    "collect_interval": "COLLECT_INTERVAL",
    "log_level": "LOG_LEVEL",
}


class ExporterSettings(BaseModel):
    """Connection target, HTTP listener and collection behaviour."""
    server: str = "localhost"
    port: int = Field(default=1433, gt=0, lt=65536)
    username: str = "sa"
    password: str = ""
    database: str = "master"
    database_url: Optional[str] = None
    connect_timeout: int = Field(default=15, gt=0)

    expose: int = Field(default=4000, gt=0, lt=65536)
    host: str = "0.0.0.0"

    failure_policy: FailurePolicy = FailurePolicy.SCRAPE
    collect_interval: float = Field(default=0, ge=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ExporterSettings":
        """Build settings from environment variables; unset ones keep their defaults."""
        environ = os.environ if environ is None else environ
        values = {field: environ[var] for field, var in ENV_VARS.items() if environ.get(var, "") != ""}
        if "failure_policy" in values:
            values["failure_policy"] = values["failure_policy"].lower()
        return cls(**values)

    @property
    def target(self) -> str:
        """Human readable target for log lines (never includes the password)."""
        return f"{self.server}:{self.port}"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
