"""Tests for the ffmpeg-backed frame source, using stand-in ffprobe/ffmpeg scripts."""

import json

import numpy as np
import pytest

from butter_video.errors import DecodeError, ToolUnavailable
from butter_video.ingest.source import (
    VideoDetails,
    build_decode_command,
    open_frame_source,
    probe_video,
)

from conftest import write_executable


WIDTH, HEIGHT = 4, 2


def _fake_ffprobe(tmp_path, payload, exit_code=0):
    body = f"""
    import sys
    sys.stdout.write({json.dumps(payload)!r})
    sys.exit({exit_code})
    """
    return write_executable(tmp_path / "ffprobe", body)


def _fake_ffmpeg(tmp_path, frame_count, extra_bytes=0, exit_code=0):
    """Writes frame_count frames where every byte of frame i equals i."""

    frame_bytes = WIDTH * HEIGHT * 3
    body = f"""
    import sys
    out = sys.stdout.buffer
    for idx in range({frame_count}):
        out.write(bytes([idx]) * {frame_bytes})
    out.write(b"\\x00" * {extra_bytes})
    out.flush()
    if {exit_code}:
        sys.stderr.write("decode failure\\n")
    sys.exit({exit_code})
    """
    return write_executable(tmp_path / "ffmpeg", body)


@pytest.fixture
def video(tmp_path):
    path = tmp_path / "clip.mkv"
    path.write_bytes(b"not really a video")
    return path


@pytest.fixture
def ffprobe_ok(tmp_path):
    return _fake_ffprobe(
        tmp_path,
        {"streams": [{"width": WIDTH, "height": HEIGHT, "pix_fmt": "yuv420p10le"}]},
    )


class TestProbeVideo:

    def test_reads_dimensions_and_bit_depth(self, tmp_path, video, ffprobe_ok):
        details = probe_video(video, ffprobe=str(ffprobe_ok))
        assert (details.width, details.height) == (WIDTH, HEIGHT)
        assert details.bit_depth == 10
        assert details.color_matrix == "bt601"

    def test_missing_video_stream(self, tmp_path, video):
        ffprobe = _fake_ffprobe(tmp_path, {"streams": []})
        with pytest.raises(DecodeError):
            probe_video(video, ffprobe=str(ffprobe))

    def test_ffprobe_failure(self, tmp_path, video):
        ffprobe = _fake_ffprobe(tmp_path, {}, exit_code=1)
        with pytest.raises(DecodeError):
            probe_video(video, ffprobe=str(ffprobe))

    def test_missing_ffprobe_binary(self, tmp_path, video):
        with pytest.raises(ToolUnavailable):
            probe_video(video, ffprobe=str(tmp_path / "nope" / "ffprobe"))


class TestDecodeCommand:

    def test_hd_uses_bt709(self, tmp_path):
        details = VideoDetails(width=1920, height=1080, pix_fmt="yuv420p", bit_depth=8)
        cmd = build_decode_command("ffmpeg", tmp_path / "a.mkv", details)
        assert "scale=in_color_matrix=bt709:in_range=tv,format=rgb24" in cmd
        assert cmd[cmd.index("-pix_fmt") + 1] == "rgb24"

    def test_sd_uses_bt601(self, tmp_path):
        details = VideoDetails(width=720, height=576, pix_fmt="yuv420p", bit_depth=8)
        cmd = build_decode_command("ffmpeg", tmp_path / "a.mkv", details)
        assert any("bt601" in part for part in cmd)

    def test_keeps_stored_orientation(self, tmp_path):
        details = VideoDetails(width=1920, height=1080, pix_fmt="yuv420p", bit_depth=8)
        cmd = build_decode_command("ffmpeg", tmp_path / "a.mp4", details)
        assert cmd.index("-noautorotate") < cmd.index("-i")
        assert cmd[cmd.index("-fps_mode") + 1] == "passthrough"
        assert "-vsync" not in cmd


class TestFfmpegFrameSource:

    def test_yields_frames_in_order(self, tmp_path, video, ffprobe_ok):
        ffmpeg = _fake_ffmpeg(tmp_path, frame_count=3)
        with open_frame_source(video, ffmpeg=str(ffmpeg), ffprobe=str(ffprobe_ok)) as source:
            decoded = list(source)
        assert [frame.frame_idx for frame in decoded] == [0, 1, 2]
        assert decoded[2].pixels.shape == (HEIGHT, WIDTH, 3)
        assert np.all(decoded[2].pixels == 2)

    def test_noisy_stderr_does_not_stall_decoding(self, tmp_path, video, ffprobe_ok):
        frame_bytes = WIDTH * HEIGHT * 3
        ffmpeg = write_executable(
            tmp_path / "ffmpeg",
            f"""
            import sys
            out = sys.stdout.buffer
            for idx in range(3):
                sys.stderr.write("[h264] error while decoding MB 0 0\\n" * 4000)
                sys.stderr.flush()
                out.write(bytes([idx]) * {frame_bytes})
                out.flush()
            """,
        )
        with open_frame_source(video, ffmpeg=str(ffmpeg), ffprobe=str(ffprobe_ok)) as source:
            decoded = list(source)
        assert [frame.frame_idx for frame in decoded] == [0, 1, 2]

    def test_truncated_trailing_frame_is_a_decode_error(self, tmp_path, video, ffprobe_ok):
        ffmpeg = _fake_ffmpeg(tmp_path, frame_count=1, extra_bytes=5)
        with open_frame_source(video, ffmpeg=str(ffmpeg), ffprobe=str(ffprobe_ok)) as source:
            next(source)
            with pytest.raises(DecodeError):
                next(source)

    def test_nonzero_exit_is_a_decode_error(self, tmp_path, video, ffprobe_ok):
        ffmpeg = _fake_ffmpeg(tmp_path, frame_count=2, exit_code=1)
        with open_frame_source(video, ffmpeg=str(ffmpeg), ffprobe=str(ffprobe_ok)) as source:
            with pytest.raises(DecodeError, match="decode failure"):
                list(source)

    def test_missing_file(self, tmp_path, ffprobe_ok):
        with pytest.raises(DecodeError):
            open_frame_source(tmp_path / "absent.mkv", ffprobe=str(ffprobe_ok))

    def test_missing_ffmpeg_binary(self, tmp_path, video, ffprobe_ok):
        with pytest.raises(ToolUnavailable):
            open_frame_source(video, ffmpeg=str(tmp_path / "nope" / "ffmpeg"), ffprobe=str(ffprobe_ok))
