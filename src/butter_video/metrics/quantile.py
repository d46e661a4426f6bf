"""Streaming quantile estimate with constant memory (P-square algorithm).

Jain & Chlamtac, "The P² algorithm for dynamic calculation of quantiles and
histograms without storing observations", CACM 1985. Five markers track the
minimum, the p/2, p and (1+p)/2 quantiles and the maximum; marker heights are
adjusted with a piecewise-parabolic fit as observations arrive.
"""

from __future__ import annotations

import math


class P2Quantile:
    def __init__(self, p: float) -> None:
        if not 0.0 < p < 1.0:
            raise ValueError(f"quantile must be in (0, 1), got {p}")
        self.p = p
        self._count = 0
        self._heights: list[float] = []
        self._positions = [1, 2, 3, 4, 5]
        self._desired = [1.0, 1.0 + 2 * p, 1.0 + 4 * p, 3.0 + 2 * p, 5.0]
        self._increments = [0.0, p / 2, p, (1 + p) / 2, 1.0]

    @property
    def count(self) -> int:
        return self._count

    def add(self, value: float) -> None:
        self._count += 1
        if self._count <= 5:
            self._heights.append(value)
            self._heights.sort()
            return

        q = self._heights
        n = self._positions
        if value < q[0]:
            q[0] = value
            k = 0
        elif value >= q[4]:
            q[4] = value
            k = 3
        else:
            k = next(i for i in range(4) if q[i] <= value < q[i + 1])

        for i in range(k + 1, 5):
            n[i] += 1
        for i in range(5):
            self._desired[i] += self._increments[i]

        for i in (1, 2, 3):
            d = self._desired[i] - n[i]
            if (d >= 1 and n[i + 1] - n[i] > 1) or (d <= -1 and n[i - 1] - n[i] < -1):
                step = 1 if d > 0 else -1
                candidate = self._parabolic(i, step)
                if not q[i - 1] < candidate < q[i + 1]:
                    candidate = self._linear(i, step)
                q[i] = candidate
                n[i] += step

    def _parabolic(self, i: int, d: int) -> float:
        q = self._heights
        n = self._positions
        return q[i] + d / (n[i + 1] - n[i - 1]) * (
            (n[i] - n[i - 1] + d) * (q[i + 1] - q[i]) / (n[i + 1] - n[i])
            + (n[i + 1] - n[i] - d) * (q[i] - q[i - 1]) / (n[i] - n[i - 1])
        )

    def _linear(self, i: int, d: int) -> float:
        q = self._heights
        n = self._positions
        return q[i] + d * (q[i + d] - q[i]) / (n[i + d] - n[i])

    def quantile(self) -> float:
        """Current estimate; exact (linear interpolation) for five or fewer values."""

        if self._count == 0:
            return math.nan
        if self._count <= 5:
            ordered = self._heights
            rank = self.p * (len(ordered) - 1)
            lo = math.floor(rank)
            hi = min(lo + 1, len(ordered) - 1)
            return ordered[lo] + (ordered[hi] - ordered[lo]) * (rank - lo)
        return self._heights[2]
