"""`butter-video butter|ssimulacra|ssimulacra2` commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import sys
from typing import Annotated, ClassVar

import tyro

from butter_video.config.loader import load_pipeline_config
from butter_video.config.schema import PipelineConfig
from butter_video.errors import ButterVideoError
from butter_video.observability.logging import configure_logging
from butter_video.observability.report import build_run_record, render_summary, write_run_report
from butter_video.pipeline.controller import PipelineController


EXIT_OK = 0
EXIT_FAILED = 1


@dataclass(slots=True)
class ScoreCommand:
    """Options shared by every metric command."""

    METRIC: ClassVar[str] = "butter"

    reference: Annotated[Path, tyro.conf.Positional]
    """Raw reference video."""
    encoded: Annotated[Path, tyro.conf.Positional]
    """Encoded video to score against the reference."""
    tool: str | None = None
    """Scorer binary; overrides the environment variable and PATH lookup."""
    config: str | None = None
    """PipelineConfig reference in the form module_or_path:attribute."""
    workers: int | None = None
    """Frame pairs scored in parallel."""
    timeout_sec: float | None = None
    """Per-frame scorer timeout in seconds."""
    no_timeout: bool = False
    """Let the scorer run as long as it needs."""
    scratch_root: Path | None = None
    """Directory under which the per-run scratch directory is created."""
    ffmpeg: str | None = None
    ffprobe: str | None = None
    report: Path | None = None
    """Write a JSON run record here, on success and on failure."""
    stats: bool = False
    """Print count/mean/min/max to stderr."""
    log_level: str = "WARNING"


@dataclass(slots=True)
class ButterCommand(ScoreCommand):
    """Calculate the butteraugli score of a video."""

    METRIC: ClassVar[str] = "butter"


@dataclass(slots=True)
class SsimulacraCommand(ScoreCommand):
    """Calculate the ssimulacra score of a video."""

    METRIC: ClassVar[str] = "ssimulacra"


@dataclass(slots=True)
class Ssimulacra2Command(ScoreCommand):
    """Calculate the ssimulacra2 score of a video."""

    METRIC: ClassVar[str] = "ssimulacra2"


def build_config(command: ScoreCommand) -> PipelineConfig:
    """Load the base config and lay explicit command-line options over it."""

    cfg = load_pipeline_config(command.config, command.METRIC)
    if command.tool is not None:
        setattr(cfg.tools, command.METRIC, command.tool)
    if command.workers is not None:
        cfg.workers = command.workers
    if command.no_timeout:
        cfg.timeout_sec = None
    elif command.timeout_sec is not None:
        cfg.timeout_sec = command.timeout_sec
    if command.scratch_root is not None:
        cfg.scratch_root = command.scratch_root
    if command.ffmpeg is not None:
        cfg.ffmpeg = command.ffmpeg
    if command.ffprobe is not None:
        cfg.ffprobe = command.ffprobe
    return cfg


def execute(command: ScoreCommand, controller_factory=None) -> int:
    factory = controller_factory or PipelineController
    configure_logging(command.log_level)
    try:
        cfg = build_config(command)
    except (ImportError, AttributeError, TypeError, ValueError, RuntimeError) as exc:
        print(f"error: invalid config: {exc}", file=sys.stderr)
        return EXIT_FAILED

    try:
        controller = factory(cfg)
        result = controller.run(command.reference, command.encoded)
    except ButterVideoError as exc:
        print(f"error: {exc}", file=sys.stderr)
        if command.report is not None:
            write_run_report(
                command.report,
                build_run_record(
                    metric=cfg.metric,
                    reference=command.reference,
                    encoded=command.encoded,
                    result=None,
                    error=exc,
                ),
            )
        return EXIT_FAILED

    print(f"Score: {result.mean}")
    if result.norm_p75 is not None:
        print(f"3-norm (75th percentile): {result.norm_p75}")
    if command.stats:
        render_summary(result, cfg.metric)
    if command.report is not None:
        write_run_report(
            command.report,
            build_run_record(
                metric=cfg.metric,
                reference=command.reference,
                encoded=command.encoded,
                result=result,
            ),
        )
    return EXIT_OK
