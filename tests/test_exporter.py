"""Tests for the Prometheus and OpenTelemetry exporters."""
import pytest
from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.parser import text_string_to_metric_families
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from opmetrics.collector import METRIC_REGISTRATIONS, IndexMetricCollector
from opmetrics.config import OTELExporterConfig, PrometheusExporterConfig
from opmetrics.otel_exporter import OTELExporter
from opmetrics.prom_exporter import PrometheusExporter, SelfMetrics, SnapshotCollector
from opmetrics.series import Sample, SnapshotStore


@pytest.fixture
def store():
    return SnapshotStore()


def published(store, collector):
    store.publish(collector.flush_metrics())
    return store


def scraped_samples(output):
    """Parse exposition text into {(name, sorted label items): value}."""
    return {
        (sample.name, tuple(sorted(sample.labels.items()))): sample.value
        for family in text_string_to_metric_families(output)
        for sample in family.samples
    }


def test_every_registration_declared_before_any_sample(store):
    exporter = PrometheusExporter(PrometheusExporterConfig(), store, METRIC_REGISTRATIONS)
    output = exporter.render()

    for registration in METRIC_REGISTRATIONS:
        assert f"# HELP {registration.name} {registration.help}" in output
        assert f"# TYPE {registration.name} gauge" in output
    assert "{" not in output


def test_samples_rendered_with_labels(store):
    collector = IndexMetricCollector()
    for _ in range(3):
        collector.record_search_latency("my-index", True, 120)
    collector.record_resource_usage("my-index", "0", "search", 2_000, 0)
    published(store, collector)

    output = PrometheusExporter(PrometheusExporterConfig(), store, METRIC_REGISTRATIONS).render()
    samples = scraped_samples(output)

    latency_labels = (("index", "my-index"), ("success", "true"))
    assert samples[("coordinator_search_latency_millis_count", latency_labels)] == 3.0
    assert samples[("coordinator_search_latency_millis_average", latency_labels)] == 120.0
    resource_labels = (("index", "my-index"), ("operation", "search"), ("shard", "0"))
    assert samples[("index_shard_cpu_time_nanosecond", resource_labels)] == 2000.0


def test_prefix_applied_to_exposed_names(store):
    config = PrometheusExporterConfig(prefix="opensearch_")
    output = PrometheusExporter(config, store, METRIC_REGISTRATIONS).render()

    assert "# TYPE opensearch_coordinator_bulk_latency_millis_p99 gauge" in output


def test_unregistered_samples_skipped(store):
    store.publish([Sample("not_registered", ("a",), 1.0)])
    registry = CollectorRegistry()
    registry.register(SnapshotCollector(store, METRIC_REGISTRATIONS))

    assert "not_registered" not in generate_latest(registry).decode("utf-8")


def test_scrape_reflects_latest_publish_only(store):
    exporter = PrometheusExporter(PrometheusExporterConfig(), store, METRIC_REGISTRATIONS)
    collector = IndexMetricCollector()

    collector.record_bulk_latency("first", True, 10)
    published(store, collector)
    assert 'index="first"' in exporter.render()

    collector.record_bulk_latency("second", True, 10)
    published(store, collector)
    output = exporter.render()
    assert 'index="second"' in output
    assert 'index="first"' not in output


def test_self_metrics():
    registry = CollectorRegistry()
    metrics = SelfMetrics(registry=registry)
    metrics.record_flush(0.002, 12)
    metrics.record_flush(0.004, 6)
    metrics.record_flush_error()
    metrics.set_live_keys(4)

    assert registry.get_sample_value("opmetrics_flushes_total") == 2
    assert registry.get_sample_value("opmetrics_flush_errors_total") == 1
    assert registry.get_sample_value("opmetrics_flushed_samples") == 6
    assert registry.get_sample_value("opmetrics_live_keys") == 4
    assert registry.get_sample_value("opmetrics_flush_duration_seconds_count") == 2


# --- OpenTelemetry ----------------------------------------------------------

def collect_points(reader):
    points = {}
    data = reader.get_metrics_data()
    if data is None:
        return points
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                for point in metric.data.data_points:
                    points[(metric.name, tuple(sorted(point.attributes.items())))] = point.value
    return points


def test_otel_gauges_report_latest_snapshot(store):
    reader = InMemoryMetricReader()
    exporter = OTELExporter(OTELExporterConfig(enabled=True), store, METRIC_REGISTRATIONS, metric_readers=[reader])

    collector = IndexMetricCollector()
    collector.record_search_latency("orders", False, 400)
    published(store, collector)

    points = collect_points(reader)
    attributes = (("index", "orders"), ("success", "false"))
    assert points[("coordinator_search_latency_millis_count", attributes)] == 1.0
    assert points[("coordinator_search_latency_millis_average", attributes)] == 400.0
    assert ("coordinator_bulk_latency_millis_count", attributes) not in points

    exporter.shutdown()


def test_otel_observe_maps_label_names(store):
    reader = InMemoryMetricReader()
    exporter = OTELExporter(OTELExporterConfig(), store, METRIC_REGISTRATIONS, metric_readers=[reader])
    store.publish([Sample("index_shard_memory_allocation_bytes", ("logs", "1", "index"), 64.0)])

    observations = exporter.gauges.observe("index_shard_memory_allocation_bytes")
    assert len(observations) == 1
    assert observations[0].value == 64.0
    assert dict(observations[0].attributes) == {"index": "logs", "shard": "1", "operation": "index"}
    assert exporter.gauges.observe("index_shard_cpu_percent") == []

    exporter.shutdown()
