"""Scratch storage for transient per-frame images."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
import shutil
import tempfile
from uuid import uuid4

from PIL import Image

from butter_video.errors import ScratchIoError
from butter_video.ingest.source import Frame
from butter_video.observability.logging import get_logger, log_event


_LOGGER = get_logger("butter_video.scratch")

SCRATCH_PREFIX = "butter_video_"


@dataclass(frozen=True, slots=True)
class TransientImage:
    frame_idx: int
    role: str
    path: Path


@contextmanager
def scratch_directory(root: Path | None = None) -> Iterator[Path]:
    """Create a private temp directory and remove it on exit, whatever happens."""

    if root is not None:
        root.mkdir(parents=True, exist_ok=True)
    try:
        path = Path(tempfile.mkdtemp(prefix=SCRATCH_PREFIX, dir=root))
    except OSError as exc:
        raise ScratchIoError(f"could not create scratch directory: {exc}") from exc
    log_event(_LOGGER, "scratch_created", level=logging.DEBUG, path=path)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        log_event(_LOGGER, "scratch_removed", level=logging.DEBUG, path=path)


def transient_name(role: str, frame_idx: int) -> str:
    """Unique per role, frame index and call."""

    return f"{role}-{frame_idx:08d}-{uuid4().hex}.png"


def write_transient_image(frame: Frame, role: str, scratch_dir: Path) -> TransientImage:
    """Write one frame as a lossless RGB PNG."""

    path = scratch_dir / transient_name(role, frame.frame_idx)
    try:
        Image.fromarray(frame.pixels).save(path, format="PNG")
    except OSError as exc:
        path.unlink(missing_ok=True)
        raise ScratchIoError(
            f"could not write {role} image for frame {frame.frame_idx}: {exc}"
        ) from exc
    return TransientImage(frame_idx=frame.frame_idx, role=role, path=path)


def remove_transient_image(image: TransientImage) -> None:
    try:
        image.path.unlink(missing_ok=True)
    except OSError as exc:
        raise ScratchIoError(f"could not remove {image.path}: {exc}") from exc


@contextmanager
def transient_image(frame: Frame, role: str, scratch_dir: Path) -> Iterator[TransientImage]:
    """Write a frame image for the duration of the block, then delete it.

    If the block fails and the delete fails too, the block's error is the one
    raised; the delete failure is logged and left for the scratch directory
    teardown.
    """

    image = write_transient_image(frame, role, scratch_dir)
    try:
        yield image
    except BaseException:
        try:
            remove_transient_image(image)
        except ScratchIoError as cleanup_exc:
            log_event(
                _LOGGER,
                "transient_cleanup_failed",
                level=logging.WARNING,
                frame_idx=image.frame_idx,
                role=role,
                error=cleanup_exc,
            )
        raise
    remove_transient_image(image)
