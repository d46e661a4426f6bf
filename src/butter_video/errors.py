"""Error taxonomy for video metric runs.

Every error here is fatal to a run. Nothing is retried or skipped, because a
dropped frame would bias the aggregate without the caller noticing.
"""

from __future__ import annotations

from pathlib import Path


class ButterVideoError(Exception):
    """Base class for all run failures."""


class DecodeError(ButterVideoError):
    """A video could not be opened or decoded."""

    def __init__(self, path: Path | str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = Path(path)


class FrameCountMismatch(ButterVideoError):
    """The reference and encoded videos have different lengths."""

    def __init__(self, reference_count: int, encoded_count: int) -> None:
        super().__init__(
            f"clips did not match in length: reference has {reference_count} "
            f"frame(s) so far, encoded has {encoded_count}"
        )
        self.reference_count = reference_count
        self.encoded_count = encoded_count


class DimensionMismatch(ButterVideoError):
    """Corresponding frames differ in width or height."""

    def __init__(
        self,
        frame_idx: int,
        reference_size: tuple[int, int],
        encoded_size: tuple[int, int],
    ) -> None:
        super().__init__(
            f"frame {frame_idx}: reference is {reference_size[0]}x{reference_size[1]}, "
            f"encoded is {encoded_size[0]}x{encoded_size[1]}"
        )
        self.frame_idx = frame_idx
        self.reference_size = reference_size
        self.encoded_size = encoded_size


class ToolUnavailable(ButterVideoError):
    """An external binary is missing or not executable."""

    def __init__(self, tool: str, detail: str) -> None:
        super().__init__(f"{tool} is unavailable: {detail}")
        self.tool = tool


class InvocationError(ButterVideoError):
    """The scorer exited non-zero or did not finish in time."""

    def __init__(
        self,
        frame_idx: int,
        message: str,
        *,
        returncode: int | None = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.frame_idx = frame_idx
        self.returncode = returncode
        self.timed_out = timed_out


class ScoreParseError(ButterVideoError):
    """The scorer output did not contain a usable score."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class ScratchIoError(ButterVideoError):
    """A transient image could not be written or removed."""


class EmptyResult(ButterVideoError):
    """No frame was scored, so no aggregate exists."""


class PipelineError(ButterVideoError):
    """A run failed at a specific step and frame.

    `cause` is the underlying taxonomy error; `frame_idx` is None when the
    failure happened before any frame was involved.
    """

    def __init__(self, step: str, frame_idx: int | None, cause: BaseException) -> None:
        where = f"at frame {frame_idx}" if frame_idx is not None else "before the first frame"
        super().__init__(f"{step} failed {where}: {cause}")
        self.step = step
        self.frame_idx = frame_idx
        self.cause = cause
