"""Request lifecycle hooks feeding the recording facade.

The host pipeline calls these when operations start and complete. They derive
labels through the classifier, read the runtime toggles, and record into an
``IndexMetricCollector``.
"""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from opmetrics.classifier import RequestClassifier
from opmetrics.collector import IndexMetricCollector
from opmetrics.requests import OperationRequest, RequestKind

logger = logging.getLogger(__name__)

MULTI_SEARCH_ACTION = "indices:data/read/msearch"
BULK_ACTION = "indices:data/write/bulk"
GET_ACTION = "indices:data/read/get"
MULTI_GET_ACTION = "indices:data/read/mget"

_TRACKED_ACTIONS = frozenset({MULTI_SEARCH_ACTION, BULK_ACTION, GET_ACTION, MULTI_GET_ACTION})
_BULK_LATENCY_ACTIONS = frozenset({MULTI_SEARCH_ACTION, BULK_ACTION})


class TaskType(str, Enum):
    SEARCH = "search"
    SEARCH_SHARD = "search_shard"
    REPLICATION = "replication"
    GENERIC = "generic"


@dataclass(frozen=True)
class ResourceUsage:
    cpu_time_nanos: int = 0
    memory_bytes: int = 0


@dataclass
class Task:
    """The host's view of a running operation."""
    action: str
    type: TaskType = TaskType.GENERIC
    start_time_nanos: int = 0
    supports_resource_tracking: bool = False
    resource_usage: Optional[ResourceUsage] = None
    resources_recorded: bool = False


_resource_claim_lock = threading.Lock()


def claim_resource_usage(task: Task) -> bool:
    """
    Mark the task's resource usage as recorded; False if it already was.

    A task routed through both the coordinator listener and the transport
    hook is recorded by whichever of them completes first.
    """
    with _resource_claim_lock:
        if task.resources_recorded:
            return False
        task.resources_recorded = True
        return True


class MetricsToggles:
    """Runtime switches read on every request; plain attribute writes are atomic."""

    def __init__(self, coordinator_metrics_enabled: bool = True, task_resource_track_enabled: bool = True):
        self.coordinator_metrics_enabled = coordinator_metrics_enabled
        self.task_resource_track_enabled = task_resource_track_enabled

    def as_dict(self):
        return {
            "coordinator_metrics_enabled": self.coordinator_metrics_enabled,
            "task_resource_track_enabled": self.task_resource_track_enabled,
        }


class ActionListener:
    """Completion callbacks for one operation. The base class ignores both."""

    def on_response(self, response: Any):
        pass

    def on_failure(self, error: Exception):
        pass


class MetricsActionListener(ActionListener):
    """
    Records latency and resource usage, then forwards to the wrapped listener.

    Metrics are recorded on the first completion callback only; a host that
    reports both success and failure, or reports twice, still counts the
    operation once.
    """

    def __init__(
        self,
        delegate: ActionListener,
        task: Task,
        action: str,
        request: Optional[OperationRequest],
        collector: IndexMetricCollector,
        classifier: RequestClassifier,
        track_resources: bool,
        clock: Callable[[], int] = time.monotonic_ns
    ):
        self.delegate = delegate
        self.task = task
        self.action = action
        self.request = request
        self.collector = collector
        self.classifier = classifier
        self.track_resources = track_resources
        self.clock = clock
        self._recorded = False
        self._lock = threading.Lock()

    def on_response(self, response: Any):
        self._record_once(True)
        self.delegate.on_response(response)

    def on_failure(self, error: Exception):
        self._record_once(False)
        self.delegate.on_failure(error)

    def _record_once(self, success: bool):
        with self._lock:
            if self._recorded:
                return
            self._recorded = True
        try:
            self._record(success)
        except Exception as e:
            # Metrics must never break the response path
            logger.error(f"Failed to record metrics for action {self.action}: {e}", exc_info=True)

    def _record(self, success: bool):
        index = self.classifier.extract_indices(self.request)
        elapsed_millis = max(0, self.clock() - self.task.start_time_nanos) // 1_000_000

        usage = self.task.resource_usage
        if (
            self.track_resources
            and self.task.supports_resource_tracking
            and usage is not None
            and claim_resource_usage(self.task)
        ):
            self.collector.record_resource_usage(
                index,
                self.classifier.extract_shard(self.request),
                self.classifier.extract_operation(self.request),
                usage.cpu_time_nanos,
                usage.memory_bytes
            )

        if self.task.type == TaskType.SEARCH:
            self.collector.record_search_latency(index, success, elapsed_millis)
        elif self.action in _BULK_LATENCY_ACTIONS:
            self.collector.record_bulk_latency(index, success, elapsed_millis)


class MetricsActionFilter:
    """Coordinator-side filter choosing which operations get a metrics listener."""

    def __init__(
        self,
        collector: IndexMetricCollector,
        classifier: Optional[RequestClassifier] = None,
        toggles: Optional[MetricsToggles] = None,
        clock: Callable[[], int] = time.monotonic_ns
    ):
        self.collector = collector
        self.classifier = classifier or RequestClassifier()
        self.toggles = toggles or MetricsToggles()
        self.clock = clock

    def should_record(self, task: Task, action: str, request: Optional[OperationRequest]) -> bool:
        if task.type in (TaskType.SEARCH, TaskType.SEARCH_SHARD, TaskType.REPLICATION):
            return True
        if request is not None and getattr(request, "kind", None) == RequestKind.MULTI_GET_SHARD:
            return True
        return action in _TRACKED_ACTIONS

    def wrap(
        self,
        task: Task,
        action: str,
        request: Optional[OperationRequest],
        listener: ActionListener
    ) -> ActionListener:
        """Return ``listener``, wrapped when this operation is tracked."""
        if not self.toggles.coordinator_metrics_enabled:
            return listener
        if not self.should_record(task, action, request):
            return listener
        return MetricsActionListener(
            listener,
            task,
            action,
            request,
            self.collector,
            self.classifier,
            self.toggles.task_resource_track_enabled,
            self.clock
        )

    def apply(
        self,
        task: Task,
        action: str,
        request: Optional[OperationRequest],
        listener: ActionListener,
        proceed: Callable[[Task, str, Optional[OperationRequest], ActionListener], Any]
    ) -> Any:
        """Continue the host's filter chain with a possibly wrapped listener."""
        return proceed(task, action, request, self.wrap(task, action, request, listener))

    @contextmanager
    def track(self, task: Task, action: str, request: Optional[OperationRequest]) -> Iterator[ActionListener]:
        """Record the enclosed block as one operation: failure if it raises."""
        listener = self.wrap(task, action, request, ActionListener())
        try:
            yield listener
        except Exception as e:
            listener.on_failure(e)
            raise
        else:
            listener.on_response(None)


class TransportMetricsHook:
    """Shard-side hook recording resource usage once a response has been sent."""

    def __init__(
        self,
        collector: IndexMetricCollector,
        classifier: Optional[RequestClassifier] = None,
        toggles: Optional[MetricsToggles] = None
    ):
        self.collector = collector
        self.classifier = classifier or RequestClassifier()
        self.toggles = toggles or MetricsToggles()

    def on_response_sent(self, request: Optional[OperationRequest], task: Task):
        if not self.toggles.task_resource_track_enabled:
            return
        if not task.supports_resource_tracking or task.resource_usage is None:
            return
        if not claim_resource_usage(task):
            logger.debug(f"Resource usage for task {task.action} already recorded")
            return

        labels = self.classifier.classify(request)
        usage = task.resource_usage
        self.collector.record_resource_usage(
            labels.index,
            labels.shard,
            labels.operation,
            usage.cpu_time_nanos,
            usage.memory_bytes
        )
        logger.debug(
            f"Recorded resource usage: index={labels.index}, shard={labels.shard}, "
            f"operation={labels.operation}, cpu_nanos={usage.cpu_time_nanos}, "
            f"memory_bytes={usage.memory_bytes}"
        )
