"""Data structures handed across the export boundary."""
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple


@dataclass(frozen=True)
class Sample:
    """A single flushed metric reading."""
    name: str
    label_values: Tuple[str, ...]
    value: float

    def labels(self, label_names: Tuple[str, ...]) -> Dict[str, str]:
        """Pair label values with the registration's label names."""
        return dict(zip(label_names, self.label_values))


@dataclass(frozen=True)
class MetricRegistration:
    """Catalog entry declaring a metric before any sample exists."""
    name: str
    label_names: Tuple[str, ...]
    help: str


class SnapshotStore:
    """Holds the most recently flushed samples; each publish replaces the last."""

    def __init__(self):
        self._lock = threading.Lock()
        self._samples: Tuple[Sample, ...] = ()
        self._published_at: Optional[float] = None
        self._generation = 0

    def publish(self, samples: Sequence[Sample]):
        with self._lock:
            self._samples = tuple(samples)
            self._published_at = time.time()
            self._generation += 1

    def latest(self) -> Tuple[Sample, ...]:
        with self._lock:
            return self._samples

    def status(self) -> Dict[str, object]:
        with self._lock:
            return {
                "samples": len(self._samples),
                "published_at": self._published_at,
                "generation": self._generation,
            }
