"""Domain exceptions for the MSSQL exporter"""
from typing import Any, List, Optional, Sequence, Tuple


class ExporterError(Exception):
    """Base exception for exporter errors."""
    pass


class DuplicateMetricName(ExporterError):
    """Raised when a metric name is registered twice in the same exposition namespace."""

    def __init__(self, name: str):
        super().__init__(f"Metric '{name}' is already registered")
        self.name = name


class LabelArityMismatch(ExporterError):
    """Raised when a gauge is set with label values that do not match its label names."""

    def __init__(self, name: str, expected: Sequence[str], received: Any):
        super().__init__(
            f"Metric '{name}' expects labels {list(expected)}, got {received!r}"
        )
        self.name = name
        self.expected = tuple(expected)
        self.received = received


class CollectionError(ExporterError):
    """Base exception for result rows that cannot be projected onto gauges."""

    def __init__(self, message: str, query_name: Optional[str] = None):
        super().__init__(message)
        self.query_name = query_name


class MissingRow(CollectionError):
    """Raised when a projection needs a row the query did not return."""

    def __init__(self, query_name: str, index: int = 0):
        super().__init__(f"Query '{query_name}' returned no row at index {index}", query_name)
        self.index = index


class RowShapeError(CollectionError):
    """Raised when a result row does not match the definition's row record."""

    def __init__(self, query_name: str, expected: Any, received: Any, message: Optional[str] = None):
        super().__init__(
            message or f"Query '{query_name}' row shape mismatch: expected {expected}, got {received}",
            query_name,
        )
        self.expected = expected
        self.received = received


class MissingColumn(RowShapeError):
    """Raised when a result row has fewer columns than the row record declares."""

    def __init__(self, query_name: str, expected: int, received: int):
        super().__init__(
            query_name,
            expected,
            received,
            f"Query '{query_name}' returned {received} column(s), expected {expected}",
        )


class ScrapeError(ExporterError):
    """Raised when a collection pass is aborted by a failing query definition."""

    def __init__(self, failures: List[Tuple[str, BaseException]]):
        names = ", ".join(name for name, _ in failures)
        super().__init__(f"Scrape failed for: {names}")
        self.failures = failures
