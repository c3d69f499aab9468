"""
AssemblyAI Speech-to-Text integration.
One provider job per segment: upload raw bytes, create a transcript job,
then poll it until it completes, fails, or runs out of time or retries.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Callable

import requests

from studyscribe.core.error_codes import (
    TranscriptionError, UploadError, JobCreationError,
    ProviderJobFailedError, PollTimeoutError,
)
from studyscribe.core.constants import (
    ErrorCode, ASSEMBLYAI_API_BASE, ASSEMBLYAI_KEY_ENV, TRANSCRIPT_FEATURES,
    POLL_INTERVAL_SEC, POLL_MAX_WAIT_SEC, POLL_MAX_RETRIES,
    MAX_TRANSFER_BYTES, HTTP_TIMEOUT_SEC,
)

logger = logging.getLogger(__name__)


class AssemblyAIClient:
    """Thin client for the upload / transcript / poll endpoints."""

    def __init__(self, api_key: str | None = None,
                 base_url: str = ASSEMBLYAI_API_BASE,
                 session: requests.Session | None = None,
                 poll_interval_sec: float = POLL_INTERVAL_SEC,
                 max_wait_sec: float = POLL_MAX_WAIT_SEC,
                 max_retries: int = POLL_MAX_RETRIES,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.api_key = api_key or os.environ.get(ASSEMBLYAI_KEY_ENV)
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.poll_interval_sec = poll_interval_sec
        self.max_wait_sec = max_wait_sec
        self.max_retries = max_retries
        self._sleep = sleep
        self._clock = clock

    @property
    def _auth(self) -> dict:
        if not self.api_key:
            raise TranscriptionError(ErrorCode.MISSING_API_KEY,
                                     f"{ASSEMBLYAI_KEY_ENV} is not set")
        return {"Authorization": f"Bearer {self.api_key}"}

    # ── Step 1: upload ────────────────────────────────────────────────

    def upload(self, audio_path: Path) -> str:
        """Stream a local file to /upload and return the provider's upload_url."""
        resolved = Path(audio_path).resolve()
        if not resolved.is_file():
            raise UploadError(None, f"Audio file not found: {resolved}")

        size = resolved.stat().st_size
        if size > MAX_TRANSFER_BYTES:
            raise UploadError(None, f"Audio file too large for upload ({size} bytes)")

        headers = dict(self._auth)
        headers["Content-Type"] = "application/octet-stream"

        try:
            with open(resolved, 'rb') as f:
                resp = self.session.post(
                    f"{self.base_url}/upload",
                    headers=headers,
                    data=f,
                    timeout=HTTP_TIMEOUT_SEC,
                )
        except requests.exceptions.RequestException as e:
            raise UploadError(None, f"Upload request failed: {e}")

        data = self._json_or_raise(resp, UploadError, "upload")
        upload_url = data.get('upload_url') if isinstance(data, dict) else None
        if not upload_url:
            raise UploadError(None, "Invalid upload response: missing upload_url")
        return upload_url

    # ── Step 2: job creation ──────────────────────────────────────────

    def create_job(self, upload_url: str) -> dict:
        body = {"audio_url": upload_url}
        body.update(TRANSCRIPT_FEATURES)

        try:
            resp = self.session.post(
                f"{self.base_url}/transcript",
                headers=self._auth,
                json=body,
                timeout=HTTP_TIMEOUT_SEC,
            )
        except requests.exceptions.RequestException as e:
            raise JobCreationError(None, f"Job creation request failed: {e}")

        data = self._json_or_raise(resp, JobCreationError, "job creation")
        if not isinstance(data, dict) or not data.get('id'):
            raise JobCreationError(None, f"Failed to create transcription job: {json.dumps(data)[:300]}")
        return data

    # ── Step 3: polling ───────────────────────────────────────────────

    def poll(self, job_id: str) -> dict:
        """
        Poll a transcript job until it reaches a terminal state.

        Returns the provider payload on `completed`. Raises
        ProviderJobFailedError on `failed`, and PollTimeoutError once the
        elapsed time exceeds max_wait_sec or max_retries polls went by
        without a terminal state, whichever comes first.
        """
        start = self._clock()
        retries = 0

        while retries < self.max_retries:
            data = self._fetch_status(job_id)
            status = data.get('status')
            elapsed = self._clock() - start
            logger.info("AssemblyAI job %s status=%s elapsed=%ds", job_id, status, elapsed)

            if status == 'completed':
                return data
            if status == 'failed':
                raise ProviderJobFailedError(None, data.get('error') or "AssemblyAI transcription failed")
            if elapsed > self.max_wait_sec:
                raise PollTimeoutError(ErrorCode.POLL_TIMEOUT,
                                       f"Transcription polling timed out after {elapsed:.0f}s")

            retries += 1
            self._sleep(self.poll_interval_sec)

        raise PollTimeoutError(ErrorCode.POLL_RETRIES_EXHAUSTED,
                               f"Maximum polling retries exceeded ({self.max_retries})")

    def _fetch_status(self, job_id: str) -> dict:
        try:
            resp = self.session.get(
                f"{self.base_url}/transcript/{job_id}",
                headers=self._auth,
                timeout=HTTP_TIMEOUT_SEC,
            )
        except requests.exceptions.RequestException as e:
            raise TranscriptionError(ErrorCode.NETWORK_TRANSIENT, f"Polling request failed: {e}")
        data = self._json_or_raise(resp, TranscriptionError, "polling")
        if not isinstance(data, dict):
            raise TranscriptionError(ErrorCode.NETWORK_TRANSIENT, "Polling returned a non-object body")
        return data

    # ── Combined ──────────────────────────────────────────────────────

    def transcribe_segment(self, audio_path: Path) -> dict:
        """Upload, create a job, poll it, and return the completed payload."""
        upload_url = self.upload(audio_path)
        logger.info("Uploaded %s", Path(audio_path).name)

        job = self.create_job(upload_url)
        logger.info("Created AssemblyAI job %s", job['id'])

        result = self.poll(job['id'])
        logger.info("Job %s completed, text length %d", job['id'], len(result.get('text') or ''))
        return result

    @staticmethod
    def _json_or_raise(resp: requests.Response, error_cls, step: str):
        if not 200 <= resp.status_code < 300:
            # Sanitize error message (never log the API key)
            error_body = resp.text[:300] if resp.text else "No response body"
            raise error_cls(None, f"AssemblyAI {step} returned {resp.status_code}: {error_body}")

        if len(resp.content or b'') > MAX_TRANSFER_BYTES:
            raise error_cls(None, f"AssemblyAI {step} response exceeds size cap")

        try:
            return resp.json()
        except ValueError:
            raise error_cls(None, f"Failed to parse AssemblyAI {step} response JSON")
