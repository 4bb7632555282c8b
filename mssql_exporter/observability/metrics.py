"""Prometheus metrics for the MSSQL exporter.

Design principles:
- Metric metadata (MetricDescriptor) is immutable and shared freely
- Gauges are bound to an explicit CollectorRegistry, never the global one
- Readings persist at their last value; there is no expiry
"""
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest
from pydantic import BaseModel, ConfigDict, field_validator

from mssql_exporter.exceptions import DuplicateMetricName, LabelArityMismatch

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

LabelValues = Tuple[str, ...]


class MetricDescriptor(BaseModel):
    """Metadata for one exported gauge."""
    model_config = ConfigDict(frozen=True)

    name: str
    help: str
    label_names: Tuple[str, ...] = ()

    def __init__(self, name: str, help: str, label_names: Sequence[str] = (), **data: Any):
        super().__init__(name=name, help=help, label_names=tuple(label_names), **data)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _METRIC_NAME_RE.match(value):
            raise ValueError(f"invalid metric name: {value!r}")
        return value

    @field_validator("label_names")
    @classmethod
    def _check_label_names(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        for label in value:
            if not _LABEL_NAME_RE.match(label) or label.startswith("__"):
                raise ValueError(f"invalid label name: {label!r}")
        if len(set(value)) != len(value):
            raise ValueError(f"duplicate label names: {list(value)}")
        return value

    @property
    def signature(self) -> str:
        """`name{label,names}` as printed in the documentation output."""
        if not self.label_names:
            return self.name
        return f"{self.name}{{{','.join(self.label_names)}}}"


def _register(factory, name: str, *args, **kwargs):
    try:
        return factory(name, *args, **kwargs)
    except ValueError as exc:
        if "Duplicated timeseries" in str(exc):
            raise DuplicateMetricName(name) from exc
        raise


class GaugeHandle:
    """A gauge created from a MetricDescriptor on a given registry.

    `set(value)` for unlabeled gauges, `set(label_values, value)` otherwise.
    Label values may be positional (ordered like `label_names`) or a mapping.
    """

    def __init__(self, descriptor: MetricDescriptor, gauge: Gauge):
        self.descriptor = descriptor
        self._gauge = gauge

    @classmethod
    def create(cls, descriptor: MetricDescriptor, registry: CollectorRegistry) -> "GaugeHandle":
        gauge = _register(
            Gauge,
            descriptor.name,
            descriptor.help,
            list(descriptor.label_names),
            registry=registry,
        )
        return cls(descriptor, gauge)

    @property
    def name(self) -> str:
        return self.descriptor.name

    def set(self, *args: Any) -> None:
        if len(args) == 1:
            label_values, value = (), args[0]
        elif len(args) == 2:
            label_values, value = args
        else:
            raise TypeError(f"set() takes a value and optional label values, got {len(args)} arguments")

        values = self._label_values(label_values)
        if values:
            self._gauge.labels(*values).set(float(value))
        else:
            self._gauge.set(float(value))

    def _label_values(self, label_values: Any) -> LabelValues:
        expected = self.descriptor.label_names
        if label_values is None:
            label_values = ()

        if isinstance(label_values, Mapping):
            if set(label_values) != set(expected):
                raise LabelArityMismatch(self.name, expected, dict(label_values))
            return tuple(str(label_values[name]) for name in expected)

        if isinstance(label_values, (str, bytes)) or len(label_values) != len(expected):
            raise LabelArityMismatch(self.name, expected, label_values)
        return tuple(str(v) for v in label_values)

    def readings(self) -> Dict[LabelValues, float]:
        """Current value per label combination."""
        result: Dict[LabelValues, float] = {}
        for family in self._gauge.collect():
            for sample in family.samples:
                key = tuple(sample.labels[name] for name in self.descriptor.label_names)
                result[key] = sample.value
        return result

    def get(self, label_values: Any = ()) -> Optional[float]:
        return self.readings().get(self._label_values(label_values))

    def render(self) -> List[str]:
        """Exposition lines for this gauge, one per label combination."""
        text = generate_latest(self._gauge).decode("utf-8")
        return [line for line in text.splitlines() if line and not line.startswith("#")]


class ExporterMetrics:
    """Self-health series of the exporter process itself."""

    DURATION_NAME = "mssql_exporter_scrape_duration_seconds"
    ERRORS_NAME = "mssql_exporter_scrape_errors"
    NAMES = (DURATION_NAME, ERRORS_NAME)

    def __init__(self, registry: CollectorRegistry):
        self.scrape_duration = _register(
            Gauge,
            self.DURATION_NAME,
            "Duration of the last collection pass against the database",
            registry=registry,
        )
        self.scrape_errors = _register(
            Counter,
            self.ERRORS_NAME,
            "Query definitions that failed during collection",
            ["query"],
            registry=registry,
        )

    @property
    def sample_names(self) -> List[str]:
        return [
            self.DURATION_NAME,
            f"{self.ERRORS_NAME}_total",
            f"{self.ERRORS_NAME}_created",
        ]
