"""Engine wiring the registry, hooks and exporters, plus the flush loop."""
import time
import logging
import threading
from typing import List, Optional

from opmetrics.classifier import RequestClassifier
from opmetrics.collector import IndexMetricCollector
from opmetrics.config import Config
from opmetrics.hooks import MetricsActionFilter, MetricsToggles, TransportMetricsHook
from opmetrics.otel_exporter import OTELExporter
from opmetrics.prom_exporter import PrometheusExporter, SelfMetrics
from opmetrics.registry import MetricRegistry
from opmetrics.series import Sample, SnapshotStore

logger = logging.getLogger(__name__)


class MetricsEngine:
    """Owns one registry generation chain and is its single flush caller."""

    def __init__(self, config: Config):
        self.config = config
        self.running = False
        self.flush_count = 0
        self.start_time = time.time()
        self._stop_event = threading.Event()

        self.classifier = RequestClassifier(
            max_index_count=config.classifier.max_index_count,
            wildcard_token=config.classifier.wildcard_token
        )
        self.registry = MetricRegistry(relative_accuracy=config.sketch.relative_accuracy)
        self.collector = IndexMetricCollector(self.registry, wildcard_token=config.classifier.wildcard_token)
        self.toggles = MetricsToggles(
            coordinator_metrics_enabled=config.toggles.coordinator_metrics_enabled,
            task_resource_track_enabled=config.toggles.task_resource_track_enabled
        )
        self.action_filter = MetricsActionFilter(self.collector, self.classifier, self.toggles)
        self.transport_hook = TransportMetricsHook(self.collector, self.classifier, self.toggles)
        self.store = SnapshotStore()

        self.self_metrics: Optional[SelfMetrics] = None
        self._initialize_exporters()

        logger.info("Metrics engine initialized")

    def _initialize_exporters(self):
        """Initialize Prometheus and OTEL exporters."""
        registrations = self.collector.get_metric_registrations()

        if self.config.exporters.prometheus.enabled:
            self.prom_exporter = PrometheusExporter(
                self.config.exporters.prometheus,
                self.store,
                registrations
            )
            self.self_metrics = SelfMetrics(
                registry=self.prom_exporter.registry,
                prefix=self.config.exporters.prometheus.prefix
            )
            logger.info("Prometheus exporter initialized")
        else:
            self.prom_exporter = None
            logger.info("Prometheus exporter disabled")

        if self.config.exporters.otel.enabled:
            self.otel_exporter = OTELExporter(
                self.config.exporters.otel,
                self.store,
                registrations
            )
            logger.info("OTEL exporter initialized")
        else:
            self.otel_exporter = None
            logger.info("OTEL exporter disabled")

    def start_exporters(self):
        """Start serving the Prometheus endpoint."""
        if self.prom_exporter:
            self.prom_exporter.start()

    def flush_once(self) -> List[Sample]:
        """Flush the registry and publish the samples for the exporters."""
        flush_start = time.time()
        samples = self.collector.flush_metrics()
        self.store.publish(samples)
        self.flush_count += 1

        if self.self_metrics:
            self.self_metrics.record_flush(time.time() - flush_start, len(samples))
            self.self_metrics.set_live_keys(self.registry.live_key_count())

        logger.debug(f"Flush {self.flush_count}: published {len(samples)} samples")
        return samples

    def run(self):
        """Flush every ``flush_interval_s`` until stopped."""
        self.running = True
        self._stop_event.clear()
        self.start_time = time.time()

        logger.info("Starting flush loop")

        flush_interval = self.config.global_.flush_interval_s

        while self.running:
            flush_start = time.time()

            try:
                self.flush_once()
            except Exception as e:
                logger.error(f"Error in flush: {e}", exc_info=True)
                if self.self_metrics:
                    self.self_metrics.record_flush_error()

            # Sleep for remaining time in flush interval
            flush_duration = time.time() - flush_start
            sleep_time = max(0, flush_interval - flush_duration)

            if sleep_time > 0:
                self._stop_event.wait(sleep_time)
            else:
                logger.warning(
                    f"Flush took {flush_duration:.3f}s, longer than interval {flush_interval}s"
                )

    def stop(self):
        """Stop the flush loop."""
        logger.info("Stopping metrics engine")
        self.running = False
        self._stop_event.set()

        # Shutdown exporters
        if self.otel_exporter:
            self.otel_exporter.shutdown()

    def status(self) -> dict:
        return {
            "uptime_seconds": time.time() - self.start_time,
            "flush_count": self.flush_count,
            "flush_interval_s": self.config.global_.flush_interval_s,
            "live_keys": self.registry.live_key_count(),
            "last_snapshot": self.store.status(),
            "toggles": self.toggles.as_dict(),
        }


def run_engine_thread(engine: MetricsEngine):
    """Run engine in a separate thread."""
    try:
        engine.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
        engine.stop()
    except Exception as e:
        logger.error(f"Engine thread error: {e}", exc_info=True)
        engine.stop()
