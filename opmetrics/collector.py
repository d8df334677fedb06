"""Recording facade: turns labeled observations into registry updates."""
import logging
import math
from typing import List, Optional, Tuple

from opmetrics.labels import (
    DEFAULT_EMPTY,
    DEFAULT_UNKNOWN,
    DEFAULT_WILDCARD_TOKEN,
    escape_wildcards,
    get_or_default,
    validate_label_names,
)
from opmetrics.registry import MetricKey, MetricRegistry, RegistrySnapshot
from opmetrics.series import MetricRegistration, Sample
from opmetrics.sketch import Histogram

logger = logging.getLogger(__name__)

SEARCH_LATENCY_METRIC_PREFIX = "coordinator_search_latency_millis"
BULK_LATENCY_METRIC_PREFIX = "coordinator_bulk_latency_millis"
LATENCY_METRIC_PREFIXES = (SEARCH_LATENCY_METRIC_PREFIX, BULK_LATENCY_METRIC_PREFIX)

COUNT_METRIC_SUFFIX = "_count"
AVERAGE_METRIC_SUFFIX = "_average"
P50_METRIC_SUFFIX = "_p50"
P90_METRIC_SUFFIX = "_p90"
P95_METRIC_SUFFIX = "_p95"
P99_METRIC_SUFFIX = "_p99"
LATENCY_METRIC_SUFFIXES = (
    COUNT_METRIC_SUFFIX,
    AVERAGE_METRIC_SUFFIX,
    P50_METRIC_SUFFIX,
    P90_METRIC_SUFFIX,
    P95_METRIC_SUFFIX,
    P99_METRIC_SUFFIX,
)
# Quantile for each percentile suffix, in output order
REPORTED_QUANTILES = (
    (P50_METRIC_SUFFIX, 0.50),
    (P90_METRIC_SUFFIX, 0.90),
    (P95_METRIC_SUFFIX, 0.95),
    (P99_METRIC_SUFFIX, 0.99),
)

INDEX_SHARD_CPU_TIME_METRIC = "index_shard_cpu_time_nanosecond"
INDEX_SHARD_CPU_PERCENT_METRIC = "index_shard_cpu_percent"
INDEX_SHARD_MEMORY_ALLOCATION_METRIC = "index_shard_memory_allocation_bytes"

LATENCY_LABEL_NAMES = ("index", "success")
RESOURCE_LABEL_NAMES = ("index", "shard", "operation")


def _build_registrations(
    latency_label_names: Tuple[str, ...] = LATENCY_LABEL_NAMES,
    resource_label_names: Tuple[str, ...] = RESOURCE_LABEL_NAMES
) -> Tuple[MetricRegistration, ...]:
    registrations = []
    for prefix in LATENCY_METRIC_PREFIXES:
        for suffix in LATENCY_METRIC_SUFFIXES:
            name = prefix + suffix
            registrations.append(MetricRegistration(name, latency_label_names, name))
    for name in (
        INDEX_SHARD_CPU_TIME_METRIC,
        INDEX_SHARD_CPU_PERCENT_METRIC,
        INDEX_SHARD_MEMORY_ALLOCATION_METRIC,
    ):
        registrations.append(MetricRegistration(name, resource_label_names, name))
    for registration in registrations:
        if not validate_label_names(registration.label_names):
            raise ValueError(
                f"Invalid label names for {registration.name}: {list(registration.label_names)}"
            )
    return tuple(registrations)


METRIC_REGISTRATIONS: Tuple[MetricRegistration, ...] = _build_registrations()


def cpu_percent(cpu_nanos: int, wall_nanos: int) -> float:
    """
    CPU time as a percentage of wall time over a flush interval.

    Computed in floating point: ``cpu_nanos / wall_nanos * 100``. Values above
    100 mean more than one core was busy. A zero-length interval yields 0.
    """
    if wall_nanos <= 0:
        return 0.0
    return cpu_nanos / wall_nanos * 100.0


class IndexMetricCollector:
    """
    Public recording API used by request lifecycle hooks.

    The registry is injected; nothing here is process-global. Recording never
    raises for odd labels: missing values fall back to sentinels.

    Label cardinality is not bounded here. Every distinct index/shard pair
    creates a new key for the rest of the flush interval, so callers own the
    naming discipline of what they record.
    """

    def __init__(
        self,
        registry: Optional[MetricRegistry] = None,
        wildcard_token: str = DEFAULT_WILDCARD_TOKEN
    ):
        self.registry = registry if registry is not None else MetricRegistry()
        self.wildcard_token = wildcard_token

    def _label(self, value: Optional[str], default: str) -> str:
        return escape_wildcards(get_or_default(value, default), self.wildcard_token)

    def record_latency(self, prefix: str, scope: Optional[str], success: bool, elapsed_millis: float):
        """Record one completed operation's latency under ``(prefix, scope, success)``."""
        if not math.isfinite(elapsed_millis):
            logger.warning(f"Dropping non-finite latency {elapsed_millis} for {prefix}")
            return
        if elapsed_millis < 0:
            logger.debug(f"Clamping negative latency {elapsed_millis} for {prefix}")
            elapsed_millis = 0
        key = MetricKey.of(
            prefix,
            self._label(scope, DEFAULT_UNKNOWN),
            "true" if success else "false"
        )
        self.registry.record_histogram(key, elapsed_millis)

    def record_search_latency(self, index: Optional[str], success: bool, elapsed_millis: float):
        self.record_latency(SEARCH_LATENCY_METRIC_PREFIX, index, success, elapsed_millis)

    def record_bulk_latency(self, index: Optional[str], success: bool, elapsed_millis: float):
        self.record_latency(BULK_LATENCY_METRIC_PREFIX, index, success, elapsed_millis)

    def record_resource_usage(
        self,
        index: Optional[str],
        shard: Optional[str],
        operation: Optional[str],
        cpu_nanos: int,
        memory_bytes: int
    ):
        """Add resource usage; non-positive figures are skipped."""
        labels = (
            self._label(index, DEFAULT_UNKNOWN),
            self._label(shard, DEFAULT_EMPTY),
            self._label(operation, DEFAULT_UNKNOWN),
        )
        if cpu_nanos > 0:
            self.registry.record_counter(MetricKey(INDEX_SHARD_CPU_TIME_METRIC, labels), int(cpu_nanos))
        if memory_bytes > 0:
            self.registry.record_counter(
                MetricKey(INDEX_SHARD_MEMORY_ALLOCATION_METRIC, labels), int(memory_bytes)
            )

    def get_metric_registrations(self) -> Tuple[MetricRegistration, ...]:
        return METRIC_REGISTRATIONS

    def flush_metrics(self) -> List[Sample]:
        """Flush the registry and render the detached generation as samples."""
        return render_snapshot(self.registry.flush())


def render_snapshot(snapshot: RegistrySnapshot) -> List[Sample]:
    """
    Expand a registry snapshot into export samples.

    Histogram keys come first, each yielding count, average and the four
    percentiles. Counter keys follow with one sample each, plus a derived
    cpu percent sample for cpu time counters. Keys are sorted within each
    group so output order is stable between flushes.
    """
    samples: List[Sample] = []

    for key in sorted(snapshot.histograms):
        samples.extend(_histogram_samples(key, snapshot.histograms[key]))

    elapsed_ns = snapshot.elapsed_ns
    for key in sorted(snapshot.counters):
        count = snapshot.counters[key]
        samples.append(Sample(key.name, key.labels, float(count)))
        if key.name == INDEX_SHARD_CPU_TIME_METRIC:
            samples.append(Sample(INDEX_SHARD_CPU_PERCENT_METRIC, key.labels, cpu_percent(count, elapsed_ns)))

    return samples


def _histogram_samples(key: MetricKey, histogram: Histogram) -> List[Sample]:
    samples = [
        Sample(key.name + COUNT_METRIC_SUFFIX, key.labels, float(histogram.get_count_value())),
        Sample(key.name + AVERAGE_METRIC_SUFFIX, key.labels, histogram.get_average_value()),
    ]
    values = histogram.get_values_at_quantiles([q for _, q in REPORTED_QUANTILES])
    for (suffix, _), value in zip(REPORTED_QUANTILES, values):
        samples.append(Sample(key.name + suffix, key.labels, value))
    return samples
