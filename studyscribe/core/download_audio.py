"""
Source downloads: YouTube audio via yt-dlp, arbitrary URLs via requests.
"""

import json
import logging
import shutil
from pathlib import Path

import requests

from studyscribe.core.security_utils import run_subprocess_capture, unique_path
from studyscribe.core.error_codes import AcquisitionError
from studyscribe.core.constants import ErrorCode, ARTIFACT_FORMAT, HTTP_TIMEOUT_SEC

logger = logging.getLogger(__name__)

_DOWNLOAD_CHUNK_BYTES = 1024 * 1024


def fetch_metadata(video_url: str) -> dict:
    """
    Fetch video metadata using yt-dlp --dump-single-json.
    Returns dict with at least 'id', 'title', 'duration'.
    """
    args = [
        "yt-dlp",
        "--dump-single-json",
        "--no-playlist",
        "--skip-download",
        video_url,
    ]

    try:
        result = run_subprocess_capture(args, timeout=60)
    except Exception as e:
        raise AcquisitionError(ErrorCode.DOWNLOAD_FAILED, f"yt-dlp metadata fetch failed: {e}")

    if result.returncode != 0:
        stderr = result.stderr or ""
        raise AcquisitionError(ErrorCode.DOWNLOAD_FAILED,
                               f"yt-dlp failed (rc={result.returncode}): {stderr[:300]}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise AcquisitionError(ErrorCode.DOWNLOAD_FAILED, f"Failed to parse yt-dlp JSON: {e}")


def get_video_duration(metadata: dict) -> float:
    """Get video duration in seconds from metadata."""
    try:
        return float(metadata.get('duration') or 0)
    except (TypeError, ValueError):
        return 0.0


def download_youtube_audio(video_url: str, scratch_dir: Path, audio_dir: Path) -> Path:
    """
    Download the best audio stream as MP3 into the scratch directory, then
    move it into the audio directory. Returns the final path.
    """
    scratch_dir.mkdir(parents=True, exist_ok=True)
    audio_dir.mkdir(parents=True, exist_ok=True)
    temp_path = unique_path(scratch_dir, ARTIFACT_FORMAT)
    # yt-dlp picks the container extension itself; the mp3 appears after extraction
    output_template = str(scratch_dir / f"{temp_path.stem}.%(ext)s")

    args = [
        "yt-dlp",
        "--no-playlist",
        "-f", "bestaudio/best",
        "--extract-audio",
        "--audio-format", ARTIFACT_FORMAT,
        "--audio-quality", "0",
        "-o", output_template,
        video_url,
    ]

    try:
        result = run_subprocess_capture(args, timeout=1800)
    except Exception as e:
        raise AcquisitionError(ErrorCode.DOWNLOAD_FAILED, f"Audio download failed: {e}")

    if result.returncode != 0:
        stderr = result.stderr or ""
        raise AcquisitionError(ErrorCode.DOWNLOAD_FAILED,
                               f"yt-dlp download failed (rc={result.returncode}): {stderr[:300]}")

    if not temp_path.exists():
        raise AcquisitionError(ErrorCode.DOWNLOAD_FAILED, "No audio file found after download")

    final_path = audio_dir / temp_path.name
    shutil.move(str(temp_path), str(final_path))
    logger.info("Downloaded audio: %s", final_path)
    return final_path


def download_url(url: str, output_path: Path,
                 session: requests.Session | None = None) -> Path:
    """Stream the raw bytes behind `url` into `output_path`."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    http = session or requests

    try:
        with http.get(url, stream=True, timeout=HTTP_TIMEOUT_SEC) as resp:
            resp.raise_for_status()
            with open(output_path, 'wb') as f:
                for block in resp.iter_content(chunk_size=_DOWNLOAD_CHUNK_BYTES):
                    if block:
                        f.write(block)
    except requests.exceptions.RequestException as e:
        raise AcquisitionError(ErrorCode.DOWNLOAD_FAILED, f"Download of {url} failed: {e}")
    except OSError as e:
        raise AcquisitionError(ErrorCode.DOWNLOAD_FAILED, f"Could not write {output_path}: {e}")

    logger.info("Downloaded %s -> %s", url, output_path)
    return output_path
