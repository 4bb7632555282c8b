"""Metric registry - the ordered query definitions plus the `up` gauge.

Run as a module to print the queries and the metrics they feed, for
database operators auditing what the exporter collects:

    python -m mssql_exporter.registry
"""
import logging
import sys
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, TextIO, Tuple

from prometheus_client import CollectorRegistry, generate_latest

from mssql_exporter.exceptions import DuplicateMetricName
from mssql_exporter.observability.metrics import ExporterMetrics, GaugeHandle, MetricDescriptor
from mssql_exporter.queries import DEFAULT_DEFINITIONS, QueryDefinition

logger = logging.getLogger(__name__)

UP = MetricDescriptor("up", "UP Status")


def _check_unique(definitions: Sequence[QueryDefinition], reserved: Iterable[str]) -> None:
    seen = set(reserved)
    for definition in definitions:
        for descriptor in definition.metrics.values():
            if descriptor.name in seen:
                raise DuplicateMetricName(descriptor.name)
            seen.add(descriptor.name)


class Registry:
    """Query definitions bound to gauges on one CollectorRegistry.

    Built once at startup and handed to both the collector and the
    metrics endpoint.
    """

    def __init__(
        self,
        definitions: Sequence[QueryDefinition] = DEFAULT_DEFINITIONS,
        collector_registry: Optional[CollectorRegistry] = None,
    ):
        self._definitions: Tuple[QueryDefinition, ...] = tuple(definitions)
        names = [d.name for d in self._definitions]
        if len(set(names)) != len(names):
            raise ValueError(f"Query definition names must be unique: {names}")

        _check_unique(self._definitions, [UP.name, *ExporterMetrics.NAMES])

        self.collector_registry = collector_registry if collector_registry is not None else CollectorRegistry()
        self.up = GaugeHandle.create(UP, self.collector_registry)
        self.exporter_metrics = ExporterMetrics(self.collector_registry)
        self._gauges: Dict[str, Dict[str, GaugeHandle]] = {}
        for definition in self._definitions:
            self._gauges[definition.name] = {
                key: GaugeHandle.create(descriptor, self.collector_registry)
                for key, descriptor in definition.metrics.items()
            }
        logger.info(
            f"Registered {len(self._definitions)} query definitions: {', '.join(names)}"
        )

    @property
    def definitions(self) -> Tuple[QueryDefinition, ...]:
        return self._definitions

    def gauges_for(self, definition: QueryDefinition) -> Dict[str, GaugeHandle]:
        return self._gauges[definition.name]

    def descriptors(self) -> Iterator[Tuple[QueryDefinition, MetricDescriptor]]:
        """Every (definition, descriptor) pair, in registration order."""
        for definition in self._definitions:
            for descriptor in definition.metrics.values():
                yield definition, descriptor

    def metric_names(self) -> List[str]:
        return [UP.name] + [descriptor.name for _, descriptor in self.descriptors()]

    def render(self) -> bytes:
        """Full exposition of every registered series."""
        return generate_latest(self.collector_registry)

    def render_health(self) -> bytes:
        """Exposition restricted to `up` and the exporter's own series."""
        names = [UP.name, *self.exporter_metrics.sample_names]
        return generate_latest(self.collector_registry.restricted_registry(names))


def document(definitions: Sequence[QueryDefinition] = DEFAULT_DEFINITIONS, out: Optional[TextIO] = None) -> None:
    """Print each query with the metrics it feeds. No database I/O."""
    out = out or sys.stdout
    for definition in definitions:
        for descriptor in definition.metrics.values():
            print("--", descriptor.name, descriptor.help, file=out)
        print(definition.query + ";", file=out)
        print("", file=out)

    print("/*", file=out)
    print("* ", UP.signature, UP.help, file=out)
    for definition in definitions:
        for descriptor in definition.metrics.values():
            print("* ", descriptor.signature, descriptor.help, file=out)
    print("*/", file=out)


if __name__ == "__main__":
    document()
