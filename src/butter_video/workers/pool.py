"""Worker pool sizing."""

from __future__ import annotations

import os


def normalize_worker_count(requested: int | None) -> int:
    """Clamp a requested scorer worker count to [1, cpu_count].

    Each worker keeps one scorer process alive at a time, so more workers
    than cores only adds contention.
    """

    if requested is None:
        return 1
    workers = max(1, int(requested))
    cpu = os.cpu_count() or 1
    return min(workers, cpu)


def in_flight_limit(workers: int) -> int:
    """Maximum number of frame pairs decoded ahead of the scorers."""

    return max(1, workers) * 2
