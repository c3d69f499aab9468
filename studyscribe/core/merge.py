"""
Merge per-segment provider results into a single transcript.
Order comes from the segment index alone, never from arrival order.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from studyscribe.core.constants import UNKNOWN_LANGUAGE

logger = logging.getLogger(__name__)


@dataclass
class SegmentResult:
    index: int
    start_seconds: int
    text: str
    raw: dict


@dataclass
class AssembledTranscript:
    language: str
    content: str
    content_json: dict
    confidence: Optional[float]


def segment_marker(position: int, start_seconds) -> str:
    """Human-readable header for the `position`-th (1-based) segment."""
    if isinstance(start_seconds, float) and start_seconds.is_integer():
        start_seconds = int(start_seconds)
    return f"[Segment {position} | start={start_seconds}s]"


def average_confidence(raws: list[dict]) -> Optional[float]:
    """Mean of the numeric confidences, rounded to 3 places; None if there are none."""
    values = []
    for raw in raws:
        value = raw.get('confidence') if isinstance(raw, dict) else None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if math.isnan(value):
            continue
        values.append(float(value))

    if not values:
        return None
    return round(sum(values) / len(values), 3)


def assemble_transcript(results: list[SegmentResult]) -> AssembledTranscript:
    ordered = sorted(results, key=lambda r: r.index)

    blocks = []
    for position, result in enumerate(ordered, start=1):
        blocks.append(segment_marker(position, result.start_seconds) + "\n\n" + (result.text or ''))
    content = '\n\n\n'.join(blocks)

    raws = [r.raw for r in ordered]
    language = UNKNOWN_LANGUAGE
    if raws and isinstance(raws[0], dict) and raws[0].get('language_code'):
        language = raws[0]['language_code']

    confidence = average_confidence(raws)
    logger.debug("Assembled %d segments, language=%s confidence=%s",
                 len(ordered), language, confidence)

    return AssembledTranscript(
        language=language,
        content=content,
        content_json={'chunks': raws},
        confidence=confidence,
    )
