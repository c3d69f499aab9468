"""
ffmpeg / ffprobe wrappers.
Every helper raises MediaError; callers re-wrap it for their own stage.
"""

import logging
from pathlib import Path

from studyscribe.core.security_utils import run_subprocess_capture
from studyscribe.core.error_codes import MediaError
from studyscribe.core.constants import (
    ErrorCode, NORM_CHANNELS, NORM_SAMPLE_RATE, NORM_CODEC, NORM_FORMAT,
    NORM_FILTER, ARTIFACT_CODEC, ARTIFACT_FORMAT,
)

logger = logging.getLogger(__name__)


def _run_ffmpeg(args: list[str], output_path: Path, code: str, what: str,
                timeout: int = 600):
    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except Exception as e:
        raise MediaError(code, f"ffmpeg {what} failed: {e}")

    if result.returncode != 0:
        stderr = result.stderr or ""
        raise MediaError(code, f"ffmpeg {what} failed (rc={result.returncode}): {stderr[-300:]}")

    if not output_path.exists():
        raise MediaError(code, f"ffmpeg {what} produced no file: {output_path.name}")


def normalize_for_asr(input_path: Path, output_path: Path) -> Path:
    """
    Normalize audio to mono, 16kHz, 16-bit PCM WAV with EBU R128 loudness
    normalization. Returns output_path.
    """
    args = [
        "ffmpeg",
        "-y",
        "-i", str(input_path),
        "-vn",
        "-af", NORM_FILTER,
        "-ac", str(NORM_CHANNELS),
        "-ar", str(NORM_SAMPLE_RATE),
        "-codec:a", NORM_CODEC,
        "-f", NORM_FORMAT,
        str(output_path),
    ]
    _run_ffmpeg(args, output_path, ErrorCode.FFMPEG_NORMALIZE, "normalization")
    logger.info("Normalized audio: %s", output_path)
    return output_path


def format_seconds(seconds: float) -> str:
    """ffmpeg time value with millisecond precision; never exponent notation."""
    return f"{float(seconds):.3f}"


def extract_segment(input_path: Path, output_path: Path,
                    start_sec: float, duration_sec: float) -> Path:
    """Cut [start, start+duration) out of a normalized WAV, keeping its format."""
    args = [
        "ffmpeg",
        "-y",
        "-ss", format_seconds(start_sec),
        "-t", format_seconds(duration_sec),
        "-i", str(input_path),
        "-ac", str(NORM_CHANNELS),
        "-ar", str(NORM_SAMPLE_RATE),
        "-codec:a", NORM_CODEC,
        "-f", NORM_FORMAT,
        str(output_path),
    ]
    _run_ffmpeg(args, output_path, ErrorCode.CHUNKING, "segment extraction", timeout=300)
    return output_path


def convert_to_audio(input_path: Path, output_path: Path) -> Path:
    """Drop any video stream and encode the audio track as MP3."""
    args = [
        "ffmpeg",
        "-y",
        "-i", str(input_path),
        "-vn",
        "-codec:a", ARTIFACT_CODEC,
        "-f", ARTIFACT_FORMAT,
        str(output_path),
    ]
    _run_ffmpeg(args, output_path, ErrorCode.CONVERT_FAILED, "conversion")
    logger.info("Converted to audio: %s", output_path)
    return output_path


def probe_duration(audio_path: Path) -> float:
    """Get media duration in seconds using ffprobe."""
    args = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(audio_path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=30)
    except Exception as e:
        raise MediaError(ErrorCode.FFPROBE_FAILED, f"ffprobe failed: {e}")

    if result.returncode != 0:
        raise MediaError(ErrorCode.FFPROBE_FAILED,
                         f"ffprobe failed (rc={result.returncode}): {(result.stderr or '')[:300]}")

    try:
        duration = float(result.stdout.strip())
    except (TypeError, ValueError):
        raise MediaError(ErrorCode.FFPROBE_FAILED,
                         f"ffprobe returned no duration for {audio_path.name}")

    if duration <= 0:
        raise MediaError(ErrorCode.FFPROBE_FAILED, f"Non-positive duration for {audio_path.name}")
    return duration
