"""Command line entry point.

    mssql-exporter [serve]   run the metrics endpoint
    mssql-exporter docs      print the collected queries and metrics
"""
import argparse
import logging
import sys
from typing import List, Optional

from mssql_exporter import __version__
from mssql_exporter.config import ExporterSettings, configure_logging
from mssql_exporter.registry import document

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mssql-exporter", description="Prometheus exporter for Microsoft SQL Server")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "docs"],
        help="serve the metrics endpoint (default) or print query documentation",
    )
    return parser


def serve(settings: ExporterSettings) -> None:
    import uvicorn

    from mssql_exporter.main import create_app

    app = create_app(settings)
    logger.info(f"Listening on {settings.host}:{settings.expose}")
    uvicorn.run(app, host=settings.host, port=settings.expose, log_level=settings.log_level.lower())


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "docs":
        document(out=sys.stdout)
        return 0

    settings = ExporterSettings.from_env()
    configure_logging(settings.log_level)
    serve(settings)
    return 0


if __name__ == "__main__":
    sys.exit(main())
