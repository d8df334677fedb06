"""Relative-error streaming quantile sketch.

Values are mapped to buckets whose boundaries grow by a constant factor
``gamma = (1 + e) / (1 - e)``, so reporting a bucket's representative value
for any value inside it is off by at most ``e`` relative error. The mapping
approximates log2 with a cubic polynomial over the significand, which is
cheaper than ``math.log`` and needs fewer buckets than a linear
interpolation for the same accuracy.
"""
import math
import sys
from abc import ABC, abstractmethod
from typing import List, Sequence

import numpy as np

DEFAULT_RELATIVE_ACCURACY = 0.01


class OperationNotPermittedError(RuntimeError):
    """Raised when a read-only sketch view is asked to record a value."""


class CubicallyInterpolatedMapping:
    """Maps positive values to integer bucket keys and back."""

    A = 6.0 / 35.0
    B = -3.0 / 5.0
    C = 10.0 / 7.0

    def __init__(self, relative_accuracy: float = DEFAULT_RELATIVE_ACCURACY):
        if not 0 < relative_accuracy < 1:
            raise ValueError(f"relative_accuracy must be in (0, 1), got {relative_accuracy}")

        self.relative_accuracy = relative_accuracy
        self.gamma = (1 + relative_accuracy) / (1 - relative_accuracy)
        # The cubic's slope against ln(v) never drops below C on [0, 1)
        self._multiplier = 1.0 / (self.C * math.log(self.gamma))
        self.min_indexable_value = sys.float_info.min * self.gamma
        self.max_indexable_value = sys.float_info.max / self.gamma

    def key(self, value: float) -> int:
        """Bucket key for ``value``; the bucket is (upper_bound(key - 1), upper_bound(key)]."""
        return int(math.ceil(self._approx_log2(value) * self._multiplier))

    def upper_bound(self, key: int) -> float:
        return self._approx_exp2(key / self._multiplier)

    def value(self, key: int) -> float:
        """Representative value of a bucket, within relative_accuracy of every member."""
        return self.upper_bound(key) * 2.0 / (1.0 + self.gamma)

    def _approx_log2(self, value: float) -> float:
        mantissa, exponent = math.frexp(value)
        significand = 2.0 * mantissa - 1.0
        return ((self.A * significand + self.B) * significand + self.C) * significand + (exponent - 1)

    def _approx_exp2(self, value: float) -> float:
        # Invert the cubic with Cardano's formula; it is strictly increasing so
        # there is exactly one real root.
        exponent = math.floor(value)
        delta_0 = self.B * self.B - 3.0 * self.A * self.C
        delta_1 = (
            2.0 * self.B ** 3
            - 9.0 * self.A * self.B * self.C
            - 27.0 * self.A * self.A * (value - exponent)
        )
        cardano = float(np.cbrt((delta_1 - math.sqrt(delta_1 * delta_1 - 4.0 * delta_0 ** 3)) / 2.0))
        significand = -(self.B + cardano + delta_0 / cardano) / (3.0 * self.A)
        return math.ldexp(1.0 + significand, exponent)


class DenseStore:
    """Bucket counts in a contiguous array that grows to cover new keys."""

    CHUNK_SIZE = 128

    def __init__(self):
        self._counts = np.zeros(0, dtype=np.int64)
        self._offset = 0  # key stored at _counts[0]
        self.count = 0

    def __len__(self) -> int:
        return len(self._counts)

    def add(self, key: int, count: int = 1):
        index = self._index_for(key)
        self._counts[index] += count
        self.count += count

    def key_at_rank(self, rank: int) -> int:
        """Smallest key whose cumulative count reaches ``rank`` (1-based)."""
        cumulative = np.cumsum(self._counts)
        index = int(np.searchsorted(cumulative, rank, side="left"))
        return self._offset + min(index, len(self._counts) - 1)

    def _index_for(self, key: int) -> int:
        if len(self._counts) == 0:
            self._counts = np.zeros(self.CHUNK_SIZE, dtype=np.int64)
            self._offset = key - self.CHUNK_SIZE // 2
        elif key < self._offset:
            grow = self._chunks_for(self._offset - key)
            self._counts = np.concatenate((np.zeros(grow, dtype=np.int64), self._counts))
            self._offset -= grow
        elif key >= self._offset + len(self._counts):
            grow = self._chunks_for(key - (self._offset + len(self._counts)) + 1)
            self._counts = np.concatenate((self._counts, np.zeros(grow, dtype=np.int64)))
        return key - self._offset

    def _chunks_for(self, missing: int) -> int:
        return int(math.ceil(missing / self.CHUNK_SIZE)) * self.CHUNK_SIZE


class Histogram(ABC):
    """Query interface shared by sketches and their read-only views."""

    @abstractmethod
    def add(self, value: float):
        pass

    @abstractmethod
    def get_value_at_quantile(self, quantile: float) -> float:
        pass

    @abstractmethod
    def get_count_value(self) -> int:
        pass

    @abstractmethod
    def get_average_value(self) -> float:
        pass

    def get_values_at_quantiles(self, quantiles: Sequence[float]) -> List[float]:
        return [self.get_value_at_quantile(q) for q in quantiles]


class QuantileSketch(Histogram):
    """
    Streaming histogram answering quantile queries with bounded relative error.

    Not thread safe; ``opmetrics.registry.HistogramMetric`` serializes access.
    Values must be finite and non-negative. Values too small to index,
    including 0, are kept in a separate zero bucket and reported as 0.
    """

    def __init__(self, relative_accuracy: float = DEFAULT_RELATIVE_ACCURACY):
        self._mapping = CubicallyInterpolatedMapping(relative_accuracy)
        self._store = DenseStore()
        self._zero_count = 0
        self._count = 0
        self._sum = 0.0

    @property
    def relative_accuracy(self) -> float:
        return self._mapping.relative_accuracy

    def add(self, value: float):
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"Sketch values must be finite and non-negative, got {value}")
        if value > self._mapping.max_indexable_value:
            raise ValueError(f"Value {value} exceeds the indexable range")

        if value <= self._mapping.min_indexable_value:
            self._zero_count += 1
        else:
            self._store.add(self._mapping.key(value))

        self._count += 1
        self._sum += value

    def get_value_at_quantile(self, quantile: float) -> float:
        if not 0 <= quantile <= 1:
            raise ValueError(f"Quantile must be in [0, 1], got {quantile}")
        if self._count == 0:
            return 0.0

        rank = max(1, math.ceil(quantile * self._count))
        if rank <= self._zero_count:
            return 0.0
        key = self._store.key_at_rank(rank - self._zero_count)
        return self._mapping.value(key)

    def get_count_value(self) -> int:
        return self._count

    def get_average_value(self) -> float:
        if self._count == 0:
            return 0.0
        return self._sum / self._count


class ReadOnlySketch(Histogram):
    """View over a sketch that answers queries but refuses ``add``."""

    def __init__(self, delegate: Histogram):
        self._delegate = delegate

    def add(self, value: float):
        raise OperationNotPermittedError("Cannot add values to a read-only sketch")

    def get_value_at_quantile(self, quantile: float) -> float:
        return self._delegate.get_value_at_quantile(quantile)

    def get_values_at_quantiles(self, quantiles: Sequence[float]) -> List[float]:
        return self._delegate.get_values_at_quantiles(quantiles)

    def get_count_value(self) -> int:
        return self._delegate.get_count_value()

    def get_average_value(self) -> float:
        return self._delegate.get_average_value()
