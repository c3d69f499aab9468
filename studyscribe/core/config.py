"""
Application configuration manager.
Stores settings in a JSON file under the data root; secrets come from the
environment only and are never written to disk.
"""

import json
import logging
import os
from pathlib import Path

from studyscribe.core.constants import (
    CONFIG_PATH, SCRATCH_DIR, AUDIO_DIR, DB_PATH, LOG_DIR,
    SEGMENT_SECONDS, POLL_INTERVAL_SEC, POLL_MAX_WAIT_SEC, POLL_MAX_RETRIES,
    ASSEMBLYAI_API_BASE, ASSEMBLYAI_KEY_ENV, GEMINI_KEY_ENV,
    SUMMARY_MODEL, SUMMARY_LANGUAGE,
)

# Validation bounds
_SEGMENT_MIN = 60
_SEGMENT_MAX = 3600
_POLL_INTERVAL_MIN = 1
_POLL_INTERVAL_MAX = 60
_MAX_WAIT_MIN = 60
_MAX_WAIT_MAX = 12 * 3600
_MAX_RETRIES_MIN = 1
_MAX_RETRIES_MAX = 10000

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'scratch_dir': str(SCRATCH_DIR),
    'audio_dir': str(AUDIO_DIR),
    'db_path': str(DB_PATH),
    'log_dir': str(LOG_DIR),
    'segment_seconds': SEGMENT_SECONDS,
    'poll_interval_sec': POLL_INTERVAL_SEC,
    'poll_max_wait_sec': POLL_MAX_WAIT_SEC,
    'poll_max_retries': POLL_MAX_RETRIES,
    'assemblyai_base_url': ASSEMBLYAI_API_BASE,
    'summary_model': SUMMARY_MODEL,
    'summary_language': SUMMARY_LANGUAGE,
    'auto_transcribe': True,
}

_BOUNDS = {
    'segment_seconds': (int, _SEGMENT_MIN, _SEGMENT_MAX),
    'poll_interval_sec': (float, _POLL_INTERVAL_MIN, _POLL_INTERVAL_MAX),
    'poll_max_wait_sec': (float, _MAX_WAIT_MIN, _MAX_WAIT_MAX),
    'poll_max_retries': (int, _MAX_RETRIES_MIN, _MAX_RETRIES_MAX),
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except (OSError, ValueError, AttributeError) as e:
                logger.warning("Failed to load config: %s", e)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _BOUNDS:
            cast, low, high = _BOUNDS[key]
            try:
                value = cast(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]
            return max(low, min(high, value))

        if key == 'auto_transcribe':
            return bool(value)

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    # ── Secrets (environment only) ────────────────────────────────────

    @property
    def assemblyai_api_key(self) -> str | None:
        return os.environ.get(ASSEMBLYAI_KEY_ENV)

    @property
    def gemini_api_key(self) -> str | None:
        return os.environ.get(GEMINI_KEY_ENV)

    # ── Paths ─────────────────────────────────────────────────────────

    @property
    def scratch_dir(self) -> Path:
        return Path(self._data['scratch_dir'])

    @property
    def audio_dir(self) -> Path:
        return Path(self._data['audio_dir'])

    @property
    def db_path(self) -> Path:
        return Path(self._data['db_path'])

    @property
    def log_dir(self) -> Path:
        return Path(self._data['log_dir'])
