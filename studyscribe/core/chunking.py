"""
Time-based audio chunking using ffmpeg.
Audio is normalized once, then cut into back-to-back segments of at most
SEGMENT_SECONDS; anything that fits in one segment is sent whole.
"""

import math
import logging
from dataclasses import dataclass, field
from pathlib import Path

from studyscribe.core.cleanup import ScratchSpace
from studyscribe.core.error_codes import ChunkingError, MediaError
from studyscribe.core.constants import ErrorCode, SEGMENT_SECONDS, NORM_FORMAT
from studyscribe.core.media import normalize_for_asr, probe_duration, extract_segment

logger = logging.getLogger(__name__)


@dataclass
class Segment:
    path: Path
    index: int
    start_seconds: int
    duration_seconds: float


@dataclass
class ChunkSet:
    segments: list[Segment]
    temp_files: list[Path] = field(default_factory=list)
    total_duration: float = 0.0


def plan_segments(duration_sec: float, segment_sec: int = SEGMENT_SECONDS) -> list[dict]:
    """
    Create segment plan entries based on duration.
    Returns list of dicts with idx, start_sec, duration_sec.
    Durations are taken at millisecond precision, so ffprobe noise such as
    900.000063 does not produce a sub-millisecond trailing segment.
    """
    duration_sec = round(duration_sec, 3)
    if duration_sec <= segment_sec:
        return [{'idx': 0, 'start_sec': 0, 'duration_sec': duration_sec}]

    count = math.ceil(duration_sec / segment_sec)
    plan = []
    for idx in range(count):
        start = idx * segment_sec
        plan.append({
            'idx': idx,
            'start_sec': start,
            'duration_sec': min(segment_sec, duration_sec - start),
        })
    return plan


class AudioChunker:
    """Normalizes an audio artifact and splits it into provider-sized segments."""

    def __init__(self, segment_sec: int = SEGMENT_SECONDS):
        self.segment_sec = segment_sec

    def prepare_and_chunk(self, source_path: Path, scratch: ScratchSpace) -> ChunkSet:
        """
        Normalize `source_path` and split it. Every file created here is
        registered with `scratch`, so a failure halfway leaves nothing behind
        once the scope closes.
        """
        temp_files: list[Path] = []

        try:
            normalized = scratch.new_path(NORM_FORMAT)
            temp_files.append(normalized)
            normalize_for_asr(Path(source_path), normalized)
            duration = probe_duration(normalized)

            plan = plan_segments(duration, self.segment_sec)
            if len(plan) == 1:
                segments = [Segment(path=normalized, index=0, start_seconds=0,
                                    duration_seconds=duration)]
            else:
                segments = []
                for entry in plan:
                    segment_path = scratch.new_path(NORM_FORMAT)
                    temp_files.append(segment_path)
                    extract_segment(normalized, segment_path,
                                    entry['start_sec'], entry['duration_sec'])
                    segments.append(Segment(
                        path=segment_path,
                        index=entry['idx'],
                        start_seconds=entry['start_sec'],
                        duration_seconds=entry['duration_sec'],
                    ))
        except MediaError as e:
            raise ChunkingError(e.code, e.message)
        except OSError as e:
            raise ChunkingError(ErrorCode.CHUNKING, f"Chunking failed: {e}")

        logger.info("Prepared audio: duration=%.1fs segments=%d", duration, len(segments))
        return ChunkSet(segments=segments, temp_files=temp_files, total_duration=duration)
