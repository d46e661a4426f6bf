"""Fold per-frame scores into one summary."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import math
import threading
from typing import Any

from butter_video.errors import EmptyResult
from butter_video.metrics.invoker import ScoreSample
from butter_video.metrics.quantile import P2Quantile


NORM_QUANTILE = 0.75


@dataclass(frozen=True, slots=True)
class AggregateResult:
    count: int
    mean: float
    minimum: float
    maximum: float
    norm_p75: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Aggregator:
    """Thread-safe running sum/count/min/max in constant memory.

    The sum is compensated (Neumaier), so the mean is independent of the
    order samples arrive in up to rounding of the final division.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count = 0
        self._sum = 0.0
        self._compensation = 0.0
        self._min = math.inf
        self._max = -math.inf
        self._norms = P2Quantile(NORM_QUANTILE)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def accumulate(self, sample: ScoreSample) -> None:
        value = sample.value
        with self._lock:
            total = self._sum + value
            if abs(self._sum) >= abs(value):
                self._compensation += (self._sum - total) + value
            else:
                self._compensation += (value - total) + self._sum
            self._sum = total
            self._count += 1
            self._min = min(self._min, value)
            self._max = max(self._max, value)
            if sample.norm is not None:
                self._norms.add(sample.norm)

    def finalize(self) -> AggregateResult:
        with self._lock:
            if self._count == 0:
                raise EmptyResult("no frames were scored")
            return AggregateResult(
                count=self._count,
                mean=(self._sum + self._compensation) / self._count,
                minimum=self._min,
                maximum=self._max,
                norm_p75=self._norms.quantile() if self._norms.count else None,
            )
