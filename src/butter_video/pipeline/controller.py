"""Run controller: decode, materialize, score and aggregate frame pairs."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import ExitStack
from enum import Enum
import logging
import os
from pathlib import Path
import time

from butter_video.config.schema import PipelineConfig
from butter_video.config.tools import resolve_scorer
from butter_video.errors import (
    ButterVideoError,
    DecodeError,
    DimensionMismatch,
    EmptyResult,
    FrameCountMismatch,
    PipelineError,
    ToolUnavailable,
)
from butter_video.ingest.pairing import FramePair, pair_frames
from butter_video.ingest.source import FrameSource, open_frame_source
from butter_video.metrics.aggregate import AggregateResult, Aggregator
from butter_video.metrics.invoker import ScoreSample, Scorer, SubprocessScorer
from butter_video.observability.logging import get_logger, log_event
from butter_video.storage.scratch import scratch_directory, transient_image
from butter_video.workers.pool import in_flight_limit, normalize_worker_count


_LOGGER = get_logger("butter_video.pipeline")

SourceOpener = Callable[..., FrameSource]


class PipelineState(str, Enum):
    INITIALIZING = "INITIALIZING"
    STREAMING = "STREAMING"
    FINALIZING = "FINALIZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PipelineController:
    """Score one reference/encoded video pair.

    The scorer binary is resolved when the controller is built, so a missing
    tool fails before anything is decoded. A controller runs once; any error
    leaves it FAILED with no result, never a partial mean.
    """

    def __init__(
        self,
        config: PipelineConfig,
        scorer: Scorer | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        source_opener: SourceOpener = open_frame_source,
    ) -> None:
        self.config = config
        self.state = PipelineState.INITIALIZING
        self.result: AggregateResult | None = None
        self.workers = normalize_worker_count(config.workers)
        self._source_opener = source_opener

        if scorer is None:
            try:
                executable = resolve_scorer(config, os.environ if environ is None else environ)
            except ToolUnavailable as exc:
                self.state = PipelineState.FAILED
                log_event(_LOGGER, "run_failed", step="resolve", error=exc)
                raise
            log_event(_LOGGER, "tools_resolved", metric=config.metric, scorer=executable)
            scorer = SubprocessScorer(config.metric_spec, executable, config.timeout_sec)
        self.scorer = scorer

    def run(self, reference: Path, encoded: Path) -> AggregateResult:
        if self.state is not PipelineState.INITIALIZING:
            raise RuntimeError(f"controller cannot run from state {self.state.value}")

        started = time.perf_counter()
        log_event(
            _LOGGER,
            "run_started",
            metric=self.config.metric,
            reference=reference,
            encoded=encoded,
            workers=self.workers,
        )
        try:
            result = self._run(reference, encoded)
        except Exception as exc:
            self.state = PipelineState.FAILED
            log_event(
                _LOGGER,
                "run_failed",
                level=logging.ERROR,
                step=getattr(exc, "step", None),
                frame_idx=getattr(exc, "frame_idx", None),
                error=exc,
            )
            raise

        self.result = result
        self.state = PipelineState.COMPLETED
        log_event(
            _LOGGER,
            "run_completed",
            metric=self.config.metric,
            elapsed_sec=round(time.perf_counter() - started, 3),
            **result.to_dict(),
        )
        return result

    def _run(self, reference: Path, encoded: Path) -> AggregateResult:
        aggregator = Aggregator()
        with ExitStack() as stack:
            try:
                scratch = stack.enter_context(scratch_directory(self.config.scratch_root))
            except ButterVideoError as exc:
                raise PipelineError("write", None, exc) from exc
            ref_source = self._open(reference, stack)
            enc_source = self._open(encoded, stack)

            self.state = PipelineState.STREAMING
            pairs = self._checked_pairs(ref_source, enc_source)
            if self.workers == 1:
                for pair in pairs:
                    aggregator.accumulate(self._score_pair(pair, scratch))
            else:
                self._stream_concurrent(pairs, scratch, aggregator)

        self.state = PipelineState.FINALIZING
        try:
            return aggregator.finalize()
        except EmptyResult as exc:
            raise PipelineError("finalize", None, exc) from exc

    def _open(self, path: Path, stack: ExitStack) -> FrameSource:
        try:
            source = self._source_opener(
                path,
                ffmpeg=self.config.ffmpeg,
                ffprobe=self.config.ffprobe,
            )
        except ButterVideoError as exc:
            raise PipelineError("decode", None, exc) from exc
        stack.callback(source.close)
        return source

    @staticmethod
    def _checked_pairs(reference: FrameSource, encoded: FrameSource) -> Iterator[FramePair]:
        pairs = pair_frames(reference, encoded)
        next_idx = 0
        while True:
            try:
                pair = next(pairs)
            except StopIteration:
                return
            except (DecodeError, ToolUnavailable) as exc:
                raise PipelineError("decode", next_idx, exc) from exc
            except FrameCountMismatch as exc:
                raise PipelineError(
                    "pair", min(exc.reference_count, exc.encoded_count), exc
                ) from exc
            except DimensionMismatch as exc:
                raise PipelineError("pair", exc.frame_idx, exc) from exc
            next_idx = pair.frame_idx + 1
            yield pair

    def _score_pair(self, pair: FramePair, scratch: Path) -> ScoreSample:
        idx = pair.frame_idx
        step = "write"
        try:
            with transient_image(pair.reference, "reference", scratch) as ref_img, \
                    transient_image(pair.encoded, "encoded", scratch) as enc_img:
                step = "score"
                sample = self.scorer.score(idx, ref_img.path, enc_img.path)
                # removing the images is the writer's half of the round trip
                step = "write"
        except Exception as exc:
            raise PipelineError(step, idx, exc) from exc
        return sample

    def _stream_concurrent(
        self,
        pairs: Iterator[FramePair],
        scratch: Path,
        aggregator: Aggregator,
    ) -> None:
        failures: list[PipelineError] = []
        in_flight: dict[Future[ScoreSample], int] = {}
        limit = in_flight_limit(self.workers)

        def _collect(done: set[Future[ScoreSample]]) -> None:
            for future in done:
                idx = in_flight.pop(future)
                if future.cancelled():
                    continue
                exc = future.exception()
                if exc is None:
                    aggregator.accumulate(future.result())
                elif isinstance(exc, PipelineError):
                    failures.append(exc)
                else:
                    failures.append(PipelineError("score", idx, exc))

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="scorer") as pool:
            try:
                for pair in pairs:
                    done, _ = wait(in_flight, timeout=0)
                    _collect(done)
                    while not failures and len(in_flight) >= limit:
                        done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                        _collect(done)
                    if failures:
                        break
                    in_flight[pool.submit(self._score_pair, pair, scratch)] = pair.frame_idx
            except PipelineError as exc:
                failures.append(exc)
            finally:
                if failures:
                    for future in in_flight:
                        future.cancel()
                done, _ = wait(list(in_flight))
                _collect(done)

        if failures:
            raise min(failures, key=lambda err: -1 if err.frame_idx is None else err.frame_idx)
