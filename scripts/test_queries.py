import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402

from mssql_exporter.exceptions import MissingColumn, MissingRow, RowShapeError  # noqa: E402
from mssql_exporter.queries import (  # noqa: E402
    mssql_connections,
    mssql_instance_local_time,
    mssql_io_stall,
)
from mssql_exporter.registry import Registry  # noqa: E402


def _gauges(definition):
    registry = Registry()
    return registry.gauges_for(definition)


def test_local_time_sets_unlabeled_gauge():
    gauges = _gauges(mssql_instance_local_time)

    mssql_instance_local_time.apply([[{"value": 1700000000}]], gauges)

    assert gauges["mssql_instance_local_time"].readings() == {(): 1700000000.0}


def test_local_time_without_rows_raises_missing_row():
    gauges = _gauges(mssql_instance_local_time)
    gauges["mssql_instance_local_time"].set(42)

    with pytest.raises(MissingRow) as exc_info:
        mssql_instance_local_time.apply([], gauges)

    assert exc_info.value.query_name == "mssql_instance_local_time"
    assert gauges["mssql_instance_local_time"].get() == 42.0


def test_connections_keep_last_known_value():
    gauges = _gauges(mssql_connections)
    gauge = gauges["mssql_connections"]

    mssql_connections.apply([("db1", 5), ("db2", 0)], gauges)
    assert gauge.get({"database": "db1", "state": "current"}) == 5.0
    assert gauge.get({"database": "db2", "state": "current"}) == 0.0

    mssql_connections.apply([("db1", 7)], gauges)
    assert gauge.readings() == {
        ("db1", "current"): 7.0,
        ("db2", "current"): 0.0,
    }


def test_connections_null_database_becomes_empty_label():
    gauges = _gauges(mssql_connections)

    mssql_connections.apply([(None, 3)], gauges)

    assert gauges["mssql_connections"].readings() == {("", "current"): 3.0}


def test_io_stall_fans_out_one_row_into_five_series():
    gauges = _gauges(mssql_io_stall)

    mssql_io_stall.apply([("db1", 10, 20, 30, 1, 2)], gauges)

    assert gauges["mssql_io_stall_total"].readings() == {("db1",): 30.0}
    assert gauges["mssql_io_stall"].readings() == {
        ("db1", "read"): 10.0,
        ("db1", "write"): 20.0,
        ("db1", "queued_read"): 1.0,
        ("db1", "queued_write"): 2.0,
    }


def test_collect_twice_is_idempotent():
    once = _gauges(mssql_io_stall)
    twice = _gauges(mssql_io_stall)
    rows = [("db1", 10, 20, 30, 1, 2), ("db2", 4, 5, 9, 0, 0)]

    mssql_io_stall.apply(rows, once)
    mssql_io_stall.apply(rows, twice)
    mssql_io_stall.apply(rows, twice)

    for key in ("mssql_io_stall", "mssql_io_stall_total"):
        assert once[key].readings() == twice[key].readings()


def test_short_row_raises_missing_column():
    with pytest.raises(MissingColumn) as exc_info:
        mssql_io_stall.parse_rows([("db1", 10, 20)])

    assert exc_info.value.expected == 6
    assert exc_info.value.received == 3


def test_long_row_raises_row_shape_error():
    with pytest.raises(RowShapeError) as exc_info:
        mssql_connections.parse_rows([("db1", 5, "extra")])

    assert not isinstance(exc_info.value, MissingColumn)


def test_invalid_cell_raises_row_shape_error():
    with pytest.raises(RowShapeError):
        mssql_connections.parse_rows([("db1", "many")])


def test_failed_parse_leaves_gauges_untouched():
    gauges = _gauges(mssql_connections)
    mssql_connections.apply([("db1", 5)], gauges)

    with pytest.raises(RowShapeError):
        mssql_connections.apply([("db1", 9), ("db2",)], gauges)

    assert gauges["mssql_connections"].readings() == {("db1", "current"): 5.0}


def test_columns_follow_row_record_order():
    assert mssql_io_stall.columns == [
        "database", "read_ms", "write_ms", "stall_ms", "queued_read_ms", "queued_write_ms",
    ]


if __name__ == "__main__":
    test_local_time_sets_unlabeled_gauge()
    test_local_time_without_rows_raises_missing_row()
    test_connections_keep_last_known_value()
    test_connections_null_database_becomes_empty_label()
    test_io_stall_fans_out_one_row_into_five_series()
    test_collect_twice_is_idempotent()
    test_short_row_raises_missing_column()
    test_long_row_raises_row_shape_error()
    test_invalid_cell_raises_row_shape_error()
    test_failed_parse_leaves_gauges_untouched()
    test_columns_follow_row_record_order()
    print("ok - test_queries")
