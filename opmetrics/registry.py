"""Concurrent metric registry with swap-based flush.

Recording threads look keys up in the live generation without locking. Only
the first observation of a key takes the generation's creation lock, and each
accumulator has its own lock for updates, so contention is confined to
callers sharing a label tuple.

``flush()`` installs a fresh generation and then seals the old one: creation
is refused and every accumulator is sealed under its own lock. A writer that
loses that race retries against the live generation, so each raw observation
is counted exactly once, but at an unspecified one of the two adjacent flush
intervals if it races the flush boundary.
"""
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional, Tuple

from opmetrics.sketch import DEFAULT_RELATIVE_ACCURACY, Histogram, QuantileSketch, ReadOnlySketch

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class MetricKey:
    """Metric name plus ordered label values."""
    name: str
    labels: Tuple[str, ...] = ()

    @classmethod
    def of(cls, name: str, *labels: str) -> "MetricKey":
        return cls(name, tuple(labels))


class MetricKind(str, Enum):
    HISTOGRAM = "histogram"
    COUNTER = "counter"


class HistogramMetric:
    """A quantile sketch guarded by its own lock."""

    def __init__(self, relative_accuracy: float = DEFAULT_RELATIVE_ACCURACY):
        self._sketch = QuantileSketch(relative_accuracy)
        self._lock = threading.Lock()
        self._sealed = False

    def add(self, value: float) -> bool:
        """Record ``value``; returns False if the metric was sealed by a flush."""
        with self._lock:
            if self._sealed:
                return False
            self._sketch.add(value)
            return True

    def seal(self):
        with self._lock:
            self._sealed = True

    def get_histogram(self) -> Histogram:
        return ReadOnlySketch(self._sketch)


class CounterMetric:
    """Non-negative running total guarded by its own lock."""

    def __init__(self):
        self._count = 0
        self._lock = threading.Lock()
        self._sealed = False

    def inc(self, delta: int = 1) -> bool:
        """Add ``delta``; returns False if the counter was sealed by a flush."""
        if delta < 0:
            raise ValueError(f"Counter increments must be non-negative, got {delta}")
        with self._lock:
            if self._sealed:
                return False
            self._count += delta
            return True

    def seal(self):
        with self._lock:
            self._sealed = True

    def count(self) -> int:
        with self._lock:
            return self._count


class _Generation:
    """Accumulators for one flush interval."""

    def __init__(self, relative_accuracy: float, clock: Callable[[], int]):
        self.start_ns = clock()
        self.histograms: Dict[MetricKey, HistogramMetric] = {}
        self.counters: Dict[MetricKey, CounterMetric] = {}
        self._relative_accuracy = relative_accuracy
        self._create_lock = threading.Lock()
        self._sealed = False

    def histogram(self, key: MetricKey) -> Optional[HistogramMetric]:
        metric = self.histograms.get(key)
        if metric is not None:
            return metric
        with self._create_lock:
            if self._sealed:
                return None
            return self.histograms.setdefault(key, HistogramMetric(self._relative_accuracy))

    def counter(self, key: MetricKey) -> Optional[CounterMetric]:
        metric = self.counters.get(key)
        if metric is not None:
            return metric
        with self._create_lock:
            if self._sealed:
                return None
            return self.counters.setdefault(key, CounterMetric())

    def seal(self):
        with self._create_lock:
            self._sealed = True
        for metric in self.histograms.values():
            metric.seal()
        for metric in self.counters.values():
            metric.seal()


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable contents of one flushed generation."""
    histograms: Mapping[MetricKey, Histogram]
    counters: Mapping[MetricKey, int]
    start_ns: int
    end_ns: int

    @property
    def elapsed_ns(self) -> int:
        return max(0, self.end_ns - self.start_ns)

    def is_empty(self) -> bool:
        return not self.histograms and not self.counters


class MetricRegistry:
    """Live key -> accumulator mapping, replaced wholesale on every flush."""

    def __init__(
        self,
        relative_accuracy: float = DEFAULT_RELATIVE_ACCURACY,
        clock: Callable[[], int] = time.monotonic_ns
    ):
        self.relative_accuracy = relative_accuracy
        self.clock = clock
        self._flush_lock = threading.Lock()
        self._generation = _Generation(relative_accuracy, clock)

    def record(self, key: MetricKey, value: float, kind: MetricKind):
        """Accumulate ``value`` for ``key`` in the live generation."""
        if kind == MetricKind.HISTOGRAM:
            self.record_histogram(key, value)
        else:
            self.record_counter(key, int(value))

    def record_histogram(self, key: MetricKey, value: float):
        while True:
            metric = self._generation.histogram(key)
            if metric is not None and metric.add(value):
                return

    def record_counter(self, key: MetricKey, delta: int):
        while True:
            metric = self._generation.counter(key)
            if metric is not None and metric.inc(delta):
                return

    def live_key_count(self) -> int:
        generation = self._generation
        return len(generation.histograms) + len(generation.counters)

    def flush(self) -> RegistrySnapshot:
        """Detach the live generation and return its contents."""
        with self._flush_lock:
            previous = self._generation
            self._generation = _Generation(self.relative_accuracy, self.clock)
        previous.seal()

        snapshot = RegistrySnapshot(
            histograms=MappingProxyType({
                key: metric.get_histogram() for key, metric in previous.histograms.items()
            }),
            counters=MappingProxyType({
                key: metric.count() for key, metric in previous.counters.items()
            }),
            start_ns=previous.start_ns,
            end_ns=self.clock(),
        )
        logger.debug(
            f"Flushed registry generation: {len(snapshot.histograms)} histograms, "
            f"{len(snapshot.counters)} counters"
        )
        return snapshot
