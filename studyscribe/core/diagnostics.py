"""
Diagnostics: tool version detection and configuration checks.
"""

import logging

from studyscribe.core.config import AppConfig
from studyscribe.core.security_utils import run_subprocess_capture

logger = logging.getLogger(__name__)


def _tool_version(args: list[str]) -> str:
    """Return the first line a tool prints for its version flag, or an error."""
    try:
        result = run_subprocess_capture(args, timeout=10)
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"
    if result.returncode != 0:
        return f"Error (rc={result.returncode})"
    lines = result.stdout.strip().splitlines()
    return lines[0] if lines else ""


def get_ytdlp_version() -> str:
    return _tool_version(["yt-dlp", "--version"])


def get_ffmpeg_version() -> str:
    return _tool_version(["ffmpeg", "-version"])


def get_ffprobe_version() -> str:
    return _tool_version(["ffprobe", "-version"])


def get_diagnostics(config: AppConfig) -> dict:
    """Gather all diagnostic information. API keys are reported as present/absent only."""
    return {
        "ytdlp_version": get_ytdlp_version(),
        "ffmpeg_version": get_ffmpeg_version(),
        "ffprobe_version": get_ffprobe_version(),
        "scratch_dir": str(config.scratch_dir),
        "audio_dir": str(config.audio_dir),
        "db_path": str(config.db_path),
        "assemblyai_key_present": bool(config.assemblyai_api_key),
        "gemini_key_present": bool(config.gemini_api_key),
    }
