"""Tests for engine wiring and the flush loop."""
import threading

from opmetrics.config import Config
from opmetrics.engine import MetricsEngine
from opmetrics.hooks import BULK_ACTION, ActionListener, ResourceUsage, Task, TaskType
from opmetrics.requests import BulkRequest, ShardSearchRequest


def make_engine(**global_settings):
    return MetricsEngine(Config(**{"global": global_settings}))


def test_flush_once_publishes_hook_recordings():
    engine = make_engine()
    task = Task(action=BULK_ACTION)
    engine.action_filter.wrap(task, BULK_ACTION, BulkRequest(indices=("logs",)), ActionListener()).on_response(None)
    engine.transport_hook.on_response_sent(
        ShardSearchRequest(index="logs", shard_id=0),
        Task(
            action="shard",
            type=TaskType.SEARCH_SHARD,
            supports_resource_tracking=True,
            resource_usage=ResourceUsage(cpu_time_nanos=100, memory_bytes=0),
        ),
    )

    samples = engine.flush_once()

    assert engine.store.latest() == tuple(samples)
    names = {s.name for s in samples}
    assert "coordinator_bulk_latency_millis_count" in names
    assert "index_shard_cpu_time_nanosecond" in names
    assert "index_shard_cpu_percent" in names
    assert engine.flush_once() == []


def test_flush_updates_self_metrics():
    engine = make_engine()
    engine.collector.record_search_latency("a", True, 1)
    engine.flush_once()

    registry = engine.prom_exporter.registry
    assert registry.get_sample_value("opmetrics_flushes_total") == 1
    assert registry.get_sample_value("opmetrics_flushed_samples") == 6
    assert registry.get_sample_value("opmetrics_live_keys") == 0
    assert "coordinator_search_latency_millis_p50" in engine.prom_exporter.render()


def test_exporters_optional():
    config = Config(exporters={"prometheus": {"enabled": False}})
    engine = MetricsEngine(config)

    assert engine.prom_exporter is None
    assert engine.self_metrics is None
    assert engine.otel_exporter is None
    assert engine.flush_once() == []


def test_classifier_settings_wired_through():
    config = Config(classifier={"max_index_count": 1, "wildcard_token": "ALL"})
    engine = MetricsEngine(config)
    task = Task(action=BULK_ACTION)
    request = BulkRequest(indices=("b-*", "a"))
    engine.action_filter.wrap(task, BULK_ACTION, request, ActionListener()).on_response(None)

    labels = {s.label_values for s in engine.flush_once()}
    assert labels == {("a/_etc", "true")}


def test_run_flushes_until_stopped():
    engine = make_engine(flush_interval_s=0.01)
    engine.collector.record_search_latency("a", True, 1)

    thread = threading.Thread(target=engine.run, daemon=True)
    thread.start()
    for _ in range(500):
        if engine.flush_count >= 3:
            break
        threading.Event().wait(0.01)
    engine.stop()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert engine.flush_count >= 3
    assert engine.status()["flush_count"] == engine.flush_count
