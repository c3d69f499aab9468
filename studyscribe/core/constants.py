"""
Shared constants for studyscribe.
Single source of truth, imported by every other module.
"""

import os
import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "studyscribe"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
DATA_ROOT = pathlib.Path(
    os.environ.get("STUDYSCRIBE_HOME", pathlib.Path.home() / ".studyscribe")
)

SCRATCH_DIR = DATA_ROOT / "uploads" / "tmp"
AUDIO_DIR = DATA_ROOT / "uploads" / "audio"
LOG_DIR = DATA_ROOT / "logs"
DB_PATH = DATA_ROOT / "studyscribe.db"
CONFIG_PATH = DATA_ROOT / "config.json"

# ── Video source types ────────────────────────────────────────────────
class SourceType:
    YOUTUBE = "youtube"
    UPLOAD = "upload"
    EXTERNAL = "external"

SOURCE_TYPES = (SourceType.YOUTUBE, SourceType.UPLOAD, SourceType.EXTERNAL)

# ── Video status values ───────────────────────────────────────────────
class VideoStatus:
    PENDING = "pending"            # schema default for rows created outside the pipeline
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    AUDIO_READY = "audio_ready"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    FAILED = "failed"

# ── Pipeline stage that last owned the video ──────────────────────────
class PipelineStage:
    ACQUISITION = "acquisition"
    TRANSCRIPTION = "transcription"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Acquisition
    INVALID_URL = "ERR_INVALID_URL"
    INVALID_SOURCE = "ERR_INVALID_SOURCE"
    UPLOAD_MISSING = "ERR_UPLOAD_MISSING"
    DOWNLOAD_FAILED = "ERR_DOWNLOAD_FAILED"
    CONVERT_FAILED = "ERR_CONVERT_FAILED"

    # Media tooling
    FFMPEG_NORMALIZE = "ERR_FFMPEG_NORMALIZE"
    FFPROBE_FAILED = "ERR_FFPROBE_FAILED"
    CHUNKING = "ERR_CHUNKING"

    # ASR provider
    ASR_UPLOAD_FAILED = "ERR_ASR_UPLOAD_FAILED"
    ASR_JOB_CREATE_FAILED = "ERR_ASR_JOB_CREATE_FAILED"
    ASR_JOB_FAILED = "ERR_ASR_JOB_FAILED"
    POLL_TIMEOUT = "ERR_POLL_TIMEOUT"
    POLL_RETRIES_EXHAUSTED = "ERR_POLL_RETRIES_EXHAUSTED"
    NETWORK_TRANSIENT = "ERR_NETWORK_TRANSIENT"
    MISSING_API_KEY = "ERR_MISSING_API_KEY"

    # Pipeline
    NOT_READY = "ERR_NOT_READY"
    VIDEO_NOT_FOUND = "ERR_VIDEO_NOT_FOUND"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"

    # Summary (never fails a job)
    SUMMARY_FAILED = "ERR_SUMMARY_FAILED"

# ── Audio pipeline defaults ───────────────────────────────────────────
SEGMENT_SECONDS = 15 * 60      # 900 s per provider job

# Normalization target
NORM_CHANNELS = 1
NORM_SAMPLE_RATE = 16000
NORM_CODEC = "pcm_s16le"
NORM_FORMAT = "wav"
NORM_FILTER = "loudnorm"

# Artifact format for acquired audio
ARTIFACT_FORMAT = "mp3"
ARTIFACT_CODEC = "libmp3lame"

# Containers that carry a video stream and must be converted on upload
VIDEO_CONTAINER_EXTENSIONS = {".mp4", ".mov", ".mkv", ".avi", ".webm"}

# ── AssemblyAI ────────────────────────────────────────────────────────
ASSEMBLYAI_API_BASE = os.environ.get(
    "ASSEMBLYAI_BASE_URL", "https://api.assemblyai.com/v2"
)
ASSEMBLYAI_KEY_ENV = "ASSEMBLYAI_API_KEY"

POLL_INTERVAL_SEC = 5
POLL_MAX_WAIT_SEC = 2 * 60 * 60
POLL_MAX_RETRIES = 100

MAX_TRANSFER_BYTES = 1_000_000_000   # 1 GB cap on upload body and response
HTTP_TIMEOUT_SEC = 120

TRANSCRIPT_FEATURES = {
    "language_detection": True,
    "speaker_labels": True,
    "disfluencies": True,
    "punctuate": True,
    "format_text": True,
    "auto_chapters": False,
    "filter_profanity": False,
    "redact_pii": False,
}

# ── Summaries (Gemini) ────────────────────────────────────────────────
GEMINI_KEY_ENV = "GEMINI_API_KEY"
SUMMARY_MODEL = "gemini-2.5-flash"
SUMMARY_LANGUAGE = "Portuguese"
SUMMARY_MIN_CHARS = 50

# ── Misc ──────────────────────────────────────────────────────────────
UNKNOWN_LANGUAGE = "unknown"
YOUTUBE_URL_PATTERNS = [
    r'(?:https?://)?(?:www\.)?youtube\.com/watch\?v=([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?youtu\.be/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/embed/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/v/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/shorts/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?m\.youtube\.com/watch\?v=([a-zA-Z0-9_-]{11})',
]
