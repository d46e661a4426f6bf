"""Dataclass-based configuration schema for butter-video."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal


MetricName = Literal["butter", "ssimulacra", "ssimulacra2"]


@dataclass(frozen=True, slots=True)
class MetricSpec:
    """Static facts about one external scorer."""

    name: MetricName
    env_var: str
    default_binary: str
    allow_negative: bool = False


METRICS: dict[str, MetricSpec] = {
    "butter": MetricSpec(
        name="butter",
        env_var="BUTTERAUGLI_PATH",
        default_binary="butteraugli",
    ),
    "ssimulacra": MetricSpec(
        name="ssimulacra",
        env_var="SSIMULACRA_PATH",
        default_binary="ssimulacra",
    ),
    "ssimulacra2": MetricSpec(
        name="ssimulacra2",
        env_var="SSIMULACRA2_PATH",
        default_binary="ssimulacra2",
        allow_negative=True,
    ),
}


@dataclass(slots=True)
class ToolPaths:
    """Explicit scorer locations. None means: look it up."""

    butter: str | None = None
    ssimulacra: str | None = None
    ssimulacra2: str | None = None

    def override_for(self, metric: str) -> str | None:
        return getattr(self, metric)


@dataclass(slots=True)
class PipelineConfig:
    """Top-level run configuration."""

    metric: MetricName = "butter"
    tools: ToolPaths = field(default_factory=ToolPaths)
    workers: int = 1
    timeout_sec: float | None = 600.0
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    scratch_root: Path | None = None

    @property
    def metric_spec(self) -> MetricSpec:
        try:
            return METRICS[self.metric]
        except KeyError:
            raise ValueError(f"Unknown metric: {self.metric!r}") from None
