"""Run an external image scorer on one reference/encoded image pair."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from pathlib import Path
import re
import subprocess
import time
from typing import Protocol

from butter_video.config.schema import MetricSpec
from butter_video.errors import InvocationError, ScoreParseError, ToolUnavailable
from butter_video.observability.logging import get_logger, log_event


_LOGGER = get_logger("butter_video.metrics")

_NUMBER_PATTERN = re.compile(
    r"(?<![\w.])[-+]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?|inf(?:inity)?\b|nan\b)",
    re.IGNORECASE,
)
_NORM_PREFIX = "3-norm"
_STDERR_TAIL = 400


@dataclass(frozen=True, slots=True)
class ScoreSample:
    frame_idx: int
    value: float
    norm: float | None = None


class Scorer(Protocol):
    """Anything that turns two image paths into a score for one frame."""

    def score(self, frame_idx: int, reference: Path, encoded: Path) -> ScoreSample:
        ...


def _first_number(text: str) -> float | None:
    match = _NUMBER_PATTERN.search(text)
    if match is None:
        return None
    return float(match.group(0))


def _check_value(value: float, allow_negative: bool, output: str) -> float:
    if not math.isfinite(value):
        raise ScoreParseError(f"score is not finite: {value}", output)
    if value < 0 and not allow_negative:
        raise ScoreParseError(f"score is negative: {value}", output)
    return value


def parse_scorer_output(output: str, allow_negative: bool = False) -> tuple[float, float | None]:
    """Return (score, 3-norm or None) from a scorer's stdout.

    The score is the first number on the first non-empty line. A line
    starting with "3-norm" anywhere in the output carries the norm.
    """

    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if not lines:
        raise ScoreParseError("scorer printed nothing", output)

    value = _first_number(lines[0])
    if value is None:
        raise ScoreParseError(f"no number in scorer output: {lines[0]!r}", output)
    value = _check_value(value, allow_negative, output)

    norm: float | None = None
    for line in lines[1:]:
        if not line.startswith(_NORM_PREFIX):
            continue
        _, _, rest = line.partition(":")
        parsed = _first_number(rest)
        if parsed is None:
            raise ScoreParseError(f"unreadable 3-norm line: {line!r}", output)
        norm = _check_value(parsed, allow_negative=False, output=output)
        break
    return value, norm


class SubprocessScorer:
    """Spawns `<executable> <reference> <encoded>` once per frame."""

    def __init__(
        self,
        metric: MetricSpec,
        executable: str,
        timeout_sec: float | None = None,
    ) -> None:
        self.metric = metric
        self.executable = executable
        self.timeout_sec = timeout_sec

    def score(self, frame_idx: int, reference: Path, encoded: Path) -> ScoreSample:
        cmd = [self.executable, str(reference), str(encoded)]
        started = time.perf_counter()
        try:
            res = subprocess.run(
                cmd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout_sec,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise InvocationError(
                frame_idx,
                f"{self.metric.default_binary} did not finish within {self.timeout_sec}s",
                timed_out=True,
            ) from exc
        except OSError as exc:
            # includes exec format errors, not only missing files
            raise ToolUnavailable(self.metric.default_binary, str(exc)) from exc

        if res.returncode != 0:
            tail = res.stderr.strip()[-_STDERR_TAIL:]
            raise InvocationError(
                frame_idx,
                f"{self.metric.default_binary} exited with {res.returncode}: {tail}",
                returncode=res.returncode,
            )

        value, norm = parse_scorer_output(res.stdout, allow_negative=self.metric.allow_negative)
        log_event(
            _LOGGER,
            "frame_scored",
            level=logging.DEBUG,
            frame_idx=frame_idx,
            metric=self.metric.name,
            score=value,
            norm=norm,
            latency_sec=round(time.perf_counter() - started, 4),
        )
        return ScoreSample(frame_idx=frame_idx, value=value, norm=norm)
