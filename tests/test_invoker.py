"""Tests for scorer output parsing and the subprocess scorer."""

import math

import pytest

from butter_video.config.schema import METRICS
from butter_video.errors import InvocationError, ScoreParseError, ToolUnavailable
from butter_video.metrics.invoker import SubprocessScorer, parse_scorer_output

from conftest import write_executable


class TestParseScorerOutput:

    def test_bare_number(self):
        assert parse_scorer_output("1.25\n") == (1.25, None)

    def test_surrounding_text(self):
        assert parse_scorer_output("  score: 0.0431 (lower is better)\n") == (0.0431, None)

    def test_scientific_notation(self):
        value, _ = parse_scorer_output("3.5e-02\n")
        assert math.isclose(value, 0.035)

    def test_blank_lines_before_score(self):
        assert parse_scorer_output("\n\n  2\n")[0] == 2.0

    def test_butteraugli_norm_line(self):
        value, norm = parse_scorer_output("1.8372\n3-norm: 0.912\n")
        assert value == 1.8372
        assert norm == 0.912

    def test_word_digits_are_not_scores(self):
        assert parse_scorer_output("v2 result 4.5")[0] == 4.5

    @pytest.mark.parametrize("output", ["", "   \n", "no digits here\n"])
    def test_unparseable(self, output):
        with pytest.raises(ScoreParseError):
            parse_scorer_output(output)

    @pytest.mark.parametrize("output", ["nan\n", "inf\n", "-inf\n"])
    def test_non_finite(self, output):
        with pytest.raises(ScoreParseError):
            parse_scorer_output(output, allow_negative=True)

    def test_negative_rejected_by_default(self):
        with pytest.raises(ScoreParseError):
            parse_scorer_output("-0.5\n")

    def test_negative_allowed_for_ssimulacra2(self):
        assert parse_scorer_output("-12.5\n", allow_negative=True)[0] == -12.5


@pytest.fixture
def images(tmp_path):
    ref = tmp_path / "reference-00000001-aa.png"
    enc = tmp_path / "encoded-00000001-bb.png"
    ref.write_bytes(b"ref")
    enc.write_bytes(b"enc")
    return ref, enc


class TestSubprocessScorer:

    def test_scores_one_pair(self, scorer_script, images):
        tool = scorer_script([0.5, 1.5], norm=0.25)
        sample = SubprocessScorer(METRICS["butter"], str(tool)).score(1, *images)
        assert sample.frame_idx == 1
        assert sample.value == 1.5
        assert sample.norm == 0.25

    def test_nonzero_exit(self, scorer_script, images):
        tool = scorer_script([0.0, 0.0], exit_code=2)
        with pytest.raises(InvocationError) as excinfo:
            SubprocessScorer(METRICS["butter"], str(tool)).score(1, *images)
        assert excinfo.value.returncode == 2
        assert excinfo.value.frame_idx == 1

    def test_garbage_output(self, scorer_script, images):
        tool = scorer_script([], raw_output="Segmentation fault?\n")
        with pytest.raises(ScoreParseError):
            SubprocessScorer(METRICS["ssimulacra"], str(tool)).score(1, *images)

    def test_negative_score_for_ssimulacra2(self, scorer_script, images):
        tool = scorer_script([0.0, -3.0])
        sample = SubprocessScorer(METRICS["ssimulacra2"], str(tool)).score(1, *images)
        assert sample.value == -3.0

    def test_missing_binary(self, tmp_path, images):
        scorer = SubprocessScorer(METRICS["butter"], str(tmp_path / "gone"))
        with pytest.raises(ToolUnavailable):
            scorer.score(1, *images)

    def test_timeout(self, tmp_path, images):
        tool = write_executable(
            tmp_path / "slow_scorer",
            """
            import time
            time.sleep(30)
            """,
        )
        scorer = SubprocessScorer(METRICS["butter"], str(tool), timeout_sec=0.5)
        with pytest.raises(InvocationError) as excinfo:
            scorer.score(1, *images)
        assert excinfo.value.timed_out

    def test_undecodable_output_bytes(self, tmp_path, images):
        tool = write_executable(
            tmp_path / "noisy_scorer",
            """
            import sys
            sys.stdout.buffer.write(b"1.5 \\xff\\xfe\\n")
            sys.stderr.buffer.write(b"\\xc3\\x28 warning\\n")
            """,
        )
        sample = SubprocessScorer(METRICS["butter"], str(tool)).score(1, *images)
        assert sample.value == 1.5

    def test_undecodable_stderr_on_failure(self, tmp_path, images):
        tool = write_executable(
            tmp_path / "crashing_scorer",
            """
            import sys
            sys.stderr.buffer.write(b"bad \\xff input\\n")
            sys.exit(4)
            """,
        )
        with pytest.raises(InvocationError, match="bad"):
            SubprocessScorer(METRICS["butter"], str(tool)).score(1, *images)

    def test_unrunnable_binary(self, tmp_path, images):
        tool = tmp_path / "corrupt_scorer"
        tool.write_bytes(b"\x00\x01garbage")
        tool.chmod(0o755)
        with pytest.raises(ToolUnavailable):
            SubprocessScorer(METRICS["butter"], str(tool)).score(1, *images)
