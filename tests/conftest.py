"""
Test Configuration
==================

Fixtures shared by the butter-video tests: synthetic frames, in-memory frame
sources, a deterministic fake scorer and generated stand-in executables.
"""

from __future__ import annotations

from pathlib import Path
import stat
import sys
import textwrap

import numpy as np
import pytest

from butter_video.ingest.source import ArrayFrameSource
from butter_video.metrics.invoker import ScoreSample


def make_frames(count: int, width: int = 8, height: int = 6, seed: int = 0) -> list[np.ndarray]:
    rng = np.random.default_rng(seed)
    return [rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8) for _ in range(count)]


class FakeScorer:
    """Returns preset scores and records what the scratch dir held at call time."""

    def __init__(self, scores, norms=None, fail_at=None, error=None):
        self.scores = list(scores)
        self.norms = norms
        self.fail_at = fail_at
        self.error = error
        self.calls: list[int] = []
        self.seen_paths: list[tuple[Path, Path]] = []

    def score(self, frame_idx, reference, encoded):
        assert reference.is_file()
        assert encoded.is_file()
        self.calls.append(frame_idx)
        self.seen_paths.append((reference, encoded))
        if self.fail_at is not None and frame_idx == self.fail_at:
            raise self.error
        norm = self.norms[frame_idx] if self.norms is not None else None
        return ScoreSample(frame_idx=frame_idx, value=self.scores[frame_idx], norm=norm)


class RecordingOpener:
    """Stands in for open_frame_source, keyed by file name."""

    def __init__(self, videos: dict[str, list[np.ndarray]]):
        self.videos = videos
        self.opened: list[str] = []
        self.sources: list[ArrayFrameSource] = []

    def __call__(self, path, *, ffmpeg="ffmpeg", ffprobe="ffprobe"):
        self.opened.append(Path(path).name)
        source = ArrayFrameSource(self.videos[Path(path).name])
        self.sources.append(source)
        return source


def write_executable(path: Path, body: str) -> Path:
    """Write a Python script runnable as a standalone binary."""

    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def frames():
    return make_frames


@pytest.fixture
def opener_factory():
    return RecordingOpener


@pytest.fixture
def scratch_root(tmp_path):
    root = tmp_path / "scratch"
    root.mkdir()
    return root


@pytest.fixture
def scorer_script(tmp_path):
    """Build a fake scorer binary that prints scores[frame_idx] for each call.

    The frame index is read back from the transient image name.
    """

    def _build(scores, *, norm=None, exit_code=0, raw_output=None, name="fake_scorer"):
        body = f"""
        import sys
        from pathlib import Path

        scores = {list(scores)!r}
        ref, enc = Path(sys.argv[1]), Path(sys.argv[2])
        if not (ref.is_file() and enc.is_file()):
            print("missing input image", file=sys.stderr)
            sys.exit(3)
        idx = int(ref.name.split("-")[1])
        raw = {raw_output!r}
        if raw is not None:
            sys.stdout.write(raw)
        else:
            print(scores[idx])
            norm = {norm!r}
            if norm is not None:
                print(f"3-norm: {{norm}}")
        sys.exit({exit_code})
        """
        return write_executable(tmp_path / name, body)

    return _build


@pytest.fixture
def fake_scorer():
    return FakeScorer
