"""Lockstep pairing of reference and encoded frames."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from butter_video.errors import DimensionMismatch, FrameCountMismatch
from butter_video.ingest.source import Frame, FrameSource


@dataclass(frozen=True, slots=True)
class FramePair:
    frame_idx: int
    reference: Frame
    encoded: Frame


def pair_frames(reference: FrameSource, encoded: FrameSource) -> Iterator[FramePair]:
    """Yield synchronized frame pairs until both sources end together.

    Raises FrameCountMismatch as soon as one source ends before the other,
    and DimensionMismatch for the first pair whose frames differ in size.
    The pairs already yielded stay valid; callers decide what to discard.
    """

    count = 0
    while True:
        ref_frame = next(reference, None)
        enc_frame = next(encoded, None)
        if ref_frame is None and enc_frame is None:
            return
        if ref_frame is None or enc_frame is None:
            raise FrameCountMismatch(
                reference_count=count + (ref_frame is not None),
                encoded_count=count + (enc_frame is not None),
            )
        if ref_frame.size != enc_frame.size:
            raise DimensionMismatch(count, ref_frame.size, enc_frame.size)

        yield FramePair(frame_idx=count, reference=ref_frame, encoded=enc_frame)
        count += 1
