"""Prometheus pull exporter using prometheus_client."""
from typing import Dict, Iterable, Optional, Sequence
from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, generate_latest, start_http_server
)
from prometheus_client.core import GaugeMetricFamily
import logging

from opmetrics.config import PrometheusExporterConfig
from opmetrics.series import MetricRegistration, SnapshotStore

logger = logging.getLogger(__name__)


class SnapshotCollector:
    """
    Custom collector exposing the latest flushed snapshot.

    Every registration is emitted as a gauge family on each scrape, even when
    the snapshot holds no sample for it, so HELP and TYPE lines are always
    declared. Samples whose name is not registered are skipped.
    """

    def __init__(self, store: SnapshotStore, registrations: Sequence[MetricRegistration], prefix: str = ""):
        self.store = store
        self.registrations = tuple(registrations)
        self.prefix = prefix

    def _families(self) -> Dict[str, GaugeMetricFamily]:
        return {
            registration.name: GaugeMetricFamily(
                f"{self.prefix}{registration.name}",
                registration.help,
                labels=list(registration.label_names)
            )
            for registration in self.registrations
        }

    def describe(self) -> Iterable[GaugeMetricFamily]:
        return list(self._families().values())

    def collect(self) -> Iterable[GaugeMetricFamily]:
        families = self._families()
        for sample in self.store.latest():
            family = families.get(sample.name)
            if family is None:
                logger.debug(f"Skipping unregistered metric {sample.name}")
                continue
            family.add_metric(list(sample.label_values), sample.value)
        return list(families.values())


class PrometheusExporter:
    """Manages the Prometheus registry and HTTP server."""

    def __init__(
        self,
        config: PrometheusExporterConfig,
        store: SnapshotStore,
        registrations: Sequence[MetricRegistration]
    ):
        self.config = config
        # Use a custom registry to avoid exporting default Python/process metrics
        self.registry = CollectorRegistry()
        self.collector = SnapshotCollector(store, registrations, prefix=config.prefix)
        self.registry.register(self.collector)

        for registration in registrations:
            logger.info(
                f"Registered Prometheus metric: {config.prefix}{registration.name} "
                f"with labels {list(registration.label_names)}"
            )

    def start(self):
        """Start Prometheus HTTP server."""
        try:
            start_http_server(
                self.config.port,
                addr=self.config.bind_address,
                registry=self.registry
            )
            logger.info(
                f"Prometheus exporter listening on "
                f"{self.config.bind_address}:{self.config.port}/metrics"
            )
        except Exception as e:
            logger.error(f"Failed to start Prometheus HTTP server: {e}")
            raise

    def render(self) -> str:
        """Text exposition of everything in the registry."""
        return generate_latest(self.registry).decode('utf-8')


class SelfMetrics:
    """Self-monitoring metrics for the flush loop."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, prefix: str = ""):
        if registry is None:
            registry = CollectorRegistry()

        self.flushes_total = Counter(
            f"{prefix}opmetrics_flushes_total",
            "Total number of registry flushes",
            registry=registry
        )

        self.flush_errors_total = Counter(
            f"{prefix}opmetrics_flush_errors_total",
            "Total number of failed flushes",
            registry=registry
        )

        self.flush_duration_seconds = Histogram(
            f"{prefix}opmetrics_flush_duration_seconds",
            "Duration of each flush in seconds",
            buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
            registry=registry
        )

        self.flushed_samples = Gauge(
            f"{prefix}opmetrics_flushed_samples",
            "Number of samples produced by the last flush",
            registry=registry
        )

        self.live_keys = Gauge(
            f"{prefix}opmetrics_live_keys",
            "Number of metric keys in the live registry generation",
            registry=registry
        )

    def record_flush(self, duration: float, sample_count: int):
        """Record a completed flush."""
        self.flushes_total.inc()
        self.flush_duration_seconds.observe(duration)
        self.flushed_samples.set(sample_count)

    def record_flush_error(self):
        self.flush_errors_total.inc()

    def set_live_keys(self, count: int):
        self.live_keys.set(count)
