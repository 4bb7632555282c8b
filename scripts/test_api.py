import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from fastapi.testclient import TestClient  # noqa: E402
from prometheus_client import CONTENT_TYPE_LATEST  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402

from mssql_exporter import __version__  # noqa: E402
from mssql_exporter.config import ExporterSettings  # noqa: E402
from mssql_exporter.main import create_app  # noqa: E402
from mssql_exporter.observability.metrics import MetricDescriptor  # noqa: E402
from mssql_exporter.queries import (  # noqa: E402
    ConnectionsRow,
    LocalTimeRow,
    QueryDefinition,
    collect_connections,
    collect_local_time,
)
from mssql_exporter.registry import Registry  # noqa: E402


def _registry(sql, local_time_sql=None):
    definitions = [
        QueryDefinition(
            name="sqlite_connections",
            query=sql,
            metrics={
                "mssql_connections": MetricDescriptor(
                    "mssql_connections", "Number of active connections", ["database", "state"]
                )
            },
            row_model=ConnectionsRow,
            collect=collect_connections,
        ),
    ]
    if local_time_sql:
        definitions.append(QueryDefinition(
            name="sqlite_local_time",
            query=local_time_sql,
            metrics={
                "mssql_instance_local_time": MetricDescriptor(
                    "mssql_instance_local_time", "Number of seconds since epoch on local instance"
                )
            },
            row_model=LocalTimeRow,
            collect=collect_local_time,
        ))
    return Registry(definitions)


def _client(sql="SELECT 'db1', 5 UNION ALL SELECT 'db2', 0", local_time_sql=None, **settings):
    app = create_app(
        settings=ExporterSettings(**settings),
        registry=_registry(sql, local_time_sql),
        engine=create_engine("sqlite://"),
    )
    return TestClient(app)


def test_metrics_renders_collected_series():
    with _client() as client:
        response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"] == CONTENT_TYPE_LATEST
    assert "X-Error" not in response.headers
    assert 'mssql_connections{database="db1",state="current"} 5.0' in response.text
    assert 'mssql_connections{database="db2",state="current"} 0.0' in response.text
    assert "up 1.0" in response.text


def test_failed_scrape_renders_only_health_series():
    with _client() as client:
        client.get("/metrics")
        client.app.state.collector.engine = create_engine("sqlite:////nonexistent-directory/exporter.db")
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "X-Error" in response.headers
    assert "up 0.0" in response.text
    assert "mssql_exporter_scrape_duration_seconds" in response.text
    assert "mssql_connections{" not in response.text


def test_query_policy_reports_skipped_definition_in_header():
    with _client("SELECT name FROM missing_table", "SELECT 1700000000", failure_policy="query") as client:
        response = client.get("/metrics")

    assert "up 1.0" in response.text
    assert "mssql_instance_local_time 1.7e+09" in response.text
    assert response.headers["X-Error"].startswith("sqlite_connections:")
    assert 'mssql_exporter_scrape_errors_total{query="sqlite_connections"} 1.0' in response.text


def test_query_policy_with_every_definition_failing_renders_only_health():
    with _client(failure_policy="query") as client:
        first = client.get("/metrics")
        client.app.state.registry.definitions[0].query = "SELECT name FROM missing_table"
        response = client.get("/metrics")

    assert 'mssql_connections{database="db1",state="current"} 5.0' in first.text
    assert "up 0.0" in response.text
    assert "X-Error" in response.headers
    assert "mssql_connections{" not in response.text


def test_background_mode_serves_health_until_first_pass():
    client = _client(collect_interval=3600)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "up 0.0" in response.text
    assert "mssql_connections{" not in response.text


def test_health_does_not_scrape():
    with _client() as client:
        response = client.get("/health")
        body = response.json()

    assert response.status_code == 200
    assert body["status"] == "ok"
    assert body["version"] == __version__
    assert body["last_scrape_ok"] is None


def test_root_points_at_metrics():
    with _client() as client:
        response = client.get("/")

    assert "/metrics" in response.text


if __name__ == "__main__":
    test_metrics_renders_collected_series()
    test_failed_scrape_renders_only_health_series()
    test_query_policy_reports_skipped_definition_in_header()
    test_query_policy_with_every_definition_failing_renders_only_health()
    test_background_mode_serves_health_until_first_pass()
    test_health_does_not_scrape()
    test_root_points_at_metrics()
    print("ok - test_api")
