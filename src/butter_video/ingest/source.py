"""Decoded frame sources.

A frame source yields RGB frames in order, starting at index 0. Sources are
single pass: once exhausted they stay exhausted and the file must be opened
again to re-read it.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
import json
import logging
from pathlib import Path
import re
import subprocess
import tempfile
from typing import IO, Protocol

import numpy as np

from butter_video.errors import DecodeError, ToolUnavailable
from butter_video.observability.logging import get_logger, log_event


_LOGGER = get_logger("butter_video.ingest")

_BIT_DEPTH_PATTERN = re.compile(r"p(?P<depth>9|10|12|14|16)(?:le|be)?$")

# Frames taller than standard definition are assumed to be BT.709.
_SD_MAX_HEIGHT = 576

_STDERR_TAIL = 2000


@dataclass(frozen=True, slots=True)
class Frame:
    """One decoded RGB frame."""

    frame_idx: int
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True, slots=True)
class VideoDetails:
    width: int
    height: int
    pix_fmt: str
    bit_depth: int

    @property
    def frame_bytes(self) -> int:
        return self.width * self.height * 3

    @property
    def color_matrix(self) -> str:
        return "bt709" if self.height > _SD_MAX_HEIGHT else "bt601"


class FrameSource(Protocol):
    """Iterator of frames that owns an underlying decoder."""

    def __iter__(self) -> Iterator[Frame]:
        ...

    def __next__(self) -> Frame:
        ...

    def close(self) -> None:
        ...


def _bit_depth(pix_fmt: str, raw_bits: str | None) -> int:
    if raw_bits and raw_bits.isdigit():
        return int(raw_bits)
    match = _BIT_DEPTH_PATTERN.search(pix_fmt)
    if match is not None:
        return int(match.group("depth"))
    return 8


def probe_video(path: Path, ffprobe: str = "ffprobe") -> VideoDetails:
    """Read dimensions and pixel format of the first video stream."""

    cmd = [
        ffprobe,
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=width,height,pix_fmt,bits_per_raw_sample",
        "-of",
        "json",
        str(path),
    ]
    try:
        res = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except (FileNotFoundError, PermissionError) as exc:
        raise ToolUnavailable("ffprobe", str(exc)) from exc
    if res.returncode != 0:
        raise DecodeError(path, f"ffprobe failed: {res.stderr.strip() or res.returncode}")

    try:
        streams = json.loads(res.stdout).get("streams", [])
    except json.JSONDecodeError as exc:
        raise DecodeError(path, f"unreadable ffprobe output: {exc}") from exc
    if not streams:
        raise DecodeError(path, "no video stream found")

    stream = streams[0]
    try:
        width = int(stream["width"])
        height = int(stream["height"])
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeError(path, "video stream has no usable dimensions") from exc
    pix_fmt = str(stream.get("pix_fmt", ""))
    return VideoDetails(
        width=width,
        height=height,
        pix_fmt=pix_fmt,
        bit_depth=_bit_depth(pix_fmt, stream.get("bits_per_raw_sample")),
    )


def build_decode_command(ffmpeg: str, path: Path, details: VideoDetails) -> list[str]:
    """ffmpeg command that writes 8-bit rgb24 frames to stdout.

    Display-matrix rotation is ignored so frames keep the probed width and
    height. Needs ffmpeg 5.1 or newer for `-fps_mode`.
    """

    vf = f"scale=in_color_matrix={details.color_matrix}:in_range=tv,format=rgb24"
    return [
        ffmpeg,
        "-hide_banner",
        "-nostdin",
        "-loglevel",
        "error",
        "-noautorotate",
        "-i",
        str(path),
        "-map",
        "0:v:0",
        "-vf",
        vf,
        "-f",
        "rawvideo",
        "-pix_fmt",
        "rgb24",
        "-fps_mode",
        "passthrough",
        "-",
    ]


class FfmpegFrameSource:
    """Frames decoded by an ffmpeg child process over a pipe."""

    def __init__(self, path: Path, details: VideoDetails, ffmpeg: str = "ffmpeg") -> None:
        self.path = path
        self.details = details
        self._next_idx = 0
        self._exhausted = False
        cmd = build_decode_command(ffmpeg, path, details)
        # stderr is read only after stdout ends, so it must not be a bounded pipe.
        self._stderr = tempfile.TemporaryFile()
        try:
            self._proc: subprocess.Popen[bytes] | None = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=self._stderr,
            )
        except OSError as exc:
            self._stderr.close()
            raise ToolUnavailable("ffmpeg", str(exc)) from exc

    def __iter__(self) -> Iterator[Frame]:
        return self

    def __next__(self) -> Frame:
        if self._exhausted or self._proc is None:
            raise StopIteration
        stdout: IO[bytes] | None = self._proc.stdout
        if stdout is None:
            raise DecodeError(self.path, "ffmpeg decode pipe is not open")

        blob = stdout.read(self.details.frame_bytes)
        if not blob:
            self._finish()
            raise StopIteration
        if len(blob) != self.details.frame_bytes:
            self.close()
            raise DecodeError(
                self.path,
                f"truncated frame {self._next_idx}: got {len(blob)} of "
                f"{self.details.frame_bytes} bytes",
            )

        pixels = np.frombuffer(blob, dtype=np.uint8).reshape(
            (self.details.height, self.details.width, 3)
        )
        frame = Frame(frame_idx=self._next_idx, pixels=pixels)
        self._next_idx += 1
        return frame

    def _finish(self) -> None:
        proc = self._proc
        self._exhausted = True
        if proc is None:
            return
        returncode = proc.wait()
        stderr = self._stderr_tail()
        self._close_pipes(proc)
        self._proc = None
        if returncode != 0:
            raise DecodeError(self.path, f"ffmpeg exited with {returncode}: {stderr}")
        log_event(
            _LOGGER,
            "decode_finished",
            level=logging.DEBUG,
            path=self.path,
            frame_count=self._next_idx,
        )

    def _stderr_tail(self) -> str:
        if self._stderr.closed:
            return ""
        self._stderr.seek(0)
        text = self._stderr.read().decode("utf-8", errors="replace").strip()
        return text[-_STDERR_TAIL:]

    def _close_pipes(self, proc: subprocess.Popen[bytes]) -> None:
        if proc.stdout is not None:
            proc.stdout.close()
        self._stderr.close()

    def close(self) -> None:
        """Stop the decoder. Safe to call more than once."""

        proc = self._proc
        self._exhausted = True
        self._proc = None
        if proc is None:
            return
        if proc.poll() is None:
            proc.kill()
        self._close_pipes(proc)
        proc.wait()

    def __enter__(self) -> "FfmpegFrameSource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ArrayFrameSource:
    """Frames backed by in-memory RGB arrays."""

    def __init__(self, frames: Iterable[np.ndarray]) -> None:
        self._frames = iter(frames)
        self._next_idx = 0
        self._closed = False

    def __iter__(self) -> Iterator[Frame]:
        return self

    def __next__(self) -> Frame:
        if self._closed:
            raise StopIteration
        pixels = next(self._frames)
        if pixels.ndim != 3 or pixels.shape[2] != 3 or pixels.dtype != np.uint8:
            raise DecodeError(
                "<memory>",
                f"frame {self._next_idx} must be uint8 HxWx3, got {pixels.dtype} {pixels.shape}",
            )
        frame = Frame(frame_idx=self._next_idx, pixels=pixels)
        self._next_idx += 1
        return frame

    def close(self) -> None:
        self._closed = True


def open_frame_source(
    path: Path,
    *,
    ffmpeg: str = "ffmpeg",
    ffprobe: str = "ffprobe",
) -> FfmpegFrameSource:
    """Probe and start decoding a video file."""

    if not path.is_file():
        raise DecodeError(path, "file does not exist")
    details = probe_video(path, ffprobe=ffprobe)
    log_event(
        _LOGGER,
        "decode_started",
        path=path,
        width=details.width,
        height=details.height,
        pix_fmt=details.pix_fmt,
        bit_depth=details.bit_depth,
        color_matrix=details.color_matrix,
    )
    return FfmpegFrameSource(path, details, ffmpeg=ffmpeg)
