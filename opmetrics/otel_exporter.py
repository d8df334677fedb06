"""OpenTelemetry push exporter using OTLP."""
from typing import Dict, List, Optional, Sequence
import logging

from opentelemetry.metrics import CallbackOptions, Observation
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from opmetrics.config import OTELExporterConfig
from opmetrics.series import MetricRegistration, SnapshotStore

logger = logging.getLogger(__name__)


class SnapshotGauges:
    """
    Observable gauges reading the latest flushed snapshot.

    Each registration gets one gauge; its callback reports every sample of
    that metric in the current snapshot, with label names as attributes.
    """

    def __init__(self, meter, store: SnapshotStore, registrations: Sequence[MetricRegistration], prefix: str = ""):
        self.store = store
        self.registrations: Dict[str, MetricRegistration] = {r.name: r for r in registrations}
        self.gauges: Dict[str, object] = {}

        for registration in registrations:
            self.gauges[registration.name] = meter.create_observable_gauge(
                name=f"{prefix}{registration.name}",
                callbacks=[self._callback_for(registration)],
                description=registration.help,
                unit="1"
            )

    def _callback_for(self, registration: MetricRegistration):
        def callback(options: CallbackOptions) -> List[Observation]:
            return self.observe(registration.name)
        return callback

    def observe(self, metric_name: str) -> List[Observation]:
        registration = self.registrations[metric_name]
        return [
            Observation(sample.value, attributes=sample.labels(registration.label_names))
            for sample in self.store.latest()
            if sample.name == metric_name
        ]


class OTELExporter:
    """Manages the OpenTelemetry meter provider and OTLP export."""

    def __init__(
        self,
        config: OTELExporterConfig,
        store: SnapshotStore,
        registrations: Sequence[MetricRegistration],
        metric_readers: Optional[List[MetricReader]] = None
    ):
        self.config = config

        if metric_readers is None:
            metric_readers = [self._create_periodic_reader()]

        # Create resource with attributes
        resource_attrs = {"service.name": "opmetrics"}
        resource_attrs.update(self.config.resource)

        self.meter_provider = MeterProvider(
            resource=Resource.create(resource_attrs),
            metric_readers=metric_readers
        )
        self.meter = self.meter_provider.get_meter(__name__)
        self.gauges = SnapshotGauges(self.meter, store, registrations, prefix=config.prefix)

        logger.info(f"OTEL exporter initialized with {len(registrations)} snapshot gauges")

    def _create_periodic_reader(self) -> PeriodicExportingMetricReader:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter

        exporter = OTLPMetricExporter(
            endpoint=self.config.endpoint,
            insecure=self.config.insecure,
            headers=tuple(self.config.headers.items()) if self.config.headers else None
        )
        logger.info(f"OTEL exporter pushing to {self.config.endpoint}")
        return PeriodicExportingMetricReader(
            exporter,
            export_interval_millis=self.config.export_interval_s * 1000
        )

    def shutdown(self):
        """Shutdown OTEL exporter."""
        self.meter_provider.shutdown()
        logger.info("OTEL exporter shutdown complete")
