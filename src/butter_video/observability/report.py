"""Run reports: an atomic JSON record and a rich diagnostics table."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import os
from pathlib import Path
import tempfile
from typing import Any

from rich.console import Console
from rich.table import Table

from butter_video.metrics.aggregate import AggregateResult


def build_run_record(
    *,
    metric: str,
    reference: Path,
    encoded: Path,
    result: AggregateResult | None,
    error: BaseException | None = None,
) -> dict[str, Any]:
    record: dict[str, Any] = {
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "metric": metric,
        "reference": str(reference.resolve()),
        "encoded": str(encoded.resolve()),
        "status": "SUCCEEDED" if error is None else "FAILED",
        "result": result.to_dict() if result is not None else None,
    }
    if error is not None:
        record["error"] = {
            "type": type(error).__name__,
            "step": getattr(error, "step", None),
            "frame_idx": getattr(error, "frame_idx", None),
            "message": str(error),
        }
    return record


def write_run_report(path: Path, record: dict[str, Any]) -> None:
    """Replace the report at `path` in one step; readers never see half a record."""

    path.parent.mkdir(parents=True, exist_ok=True)
    body = json.dumps(record, indent=2, sort_keys=True) + "\n"
    fd, staging = tempfile.mkstemp(prefix=f".{path.stem}-", suffix=".json", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(body)
        os.replace(staging, path)
    except BaseException:
        Path(staging).unlink(missing_ok=True)
        raise


def render_summary(result: AggregateResult, metric: str, console: Console | None = None) -> None:
    """Print count/mean/min/max to stderr as a table."""

    console = console or Console(stderr=True)
    table = Table(title=f"{metric} per-frame scores", show_header=True)
    table.add_column("frames", justify="right")
    table.add_column("mean", justify="right")
    table.add_column("min", justify="right")
    table.add_column("max", justify="right")
    if result.norm_p75 is not None:
        table.add_column("3-norm p75", justify="right")

    row = [
        str(result.count),
        f"{result.mean:.6f}",
        f"{result.minimum:.6f}",
        f"{result.maximum:.6f}",
    ]
    if result.norm_p75 is not None:
        row.append(f"{result.norm_p75:.6f}")
    table.add_row(*row)
    console.print(table)
