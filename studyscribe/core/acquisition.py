"""
Acquisition worker: turns a video's source into a local audio artifact.

    youtube  -> yt-dlp best audio, duration from yt-dlp metadata
    upload   -> video containers converted to MP3, audio files moved as-is
    external -> raw download to scratch, always converted to MP3
"""

import logging
import shutil
from pathlib import Path

import requests

from studyscribe.core.cleanup import ScratchSpace, remove_file
from studyscribe.core.constants import (
    ErrorCode, SourceType, VideoStatus, ARTIFACT_FORMAT,
    VIDEO_CONTAINER_EXTENSIONS,
)
from studyscribe.core.db_sqlite import Database
from studyscribe.core.download_audio import (
    download_youtube_audio, download_url, fetch_metadata, get_video_duration,
)
from studyscribe.core.error_codes import AcquisitionError, JobError
from studyscribe.core.media import convert_to_audio, probe_duration
from studyscribe.core.models_sqlite import UploadedFile, Video
from studyscribe.core.security_utils import unique_path
from studyscribe.core.state_machine import VideoStateMachine
from studyscribe.core.url_parse import validate_youtube_url, validate_http_url, url_extension

logger = logging.getLogger(__name__)


class AcquisitionWorker:

    def __init__(self, db: Database, state: VideoStateMachine,
                 scratch_dir: Path, audio_dir: Path,
                 session: requests.Session | None = None):
        self.db = db
        self.state = state
        self.scratch_dir = Path(scratch_dir)
        self.audio_dir = Path(audio_dir)
        self.session = session

    def acquire(self, video_id: str, upload: UploadedFile | None = None) -> Video:
        """
        Resolve the video's source into an audio artifact and mark it
        `audio_ready`. Any failure marks the video `failed` and re-raises
        as AcquisitionError.
        """
        video = self.db.get_video(video_id)
        if video is None:
            raise AcquisitionError(ErrorCode.VIDEO_NOT_FOUND, f"Video {video_id} not found")
        if video.status != VideoStatus.QUEUED:
            raise AcquisitionError(ErrorCode.NOT_READY,
                                   f"Video {video_id} is {video.status}, expected {VideoStatus.QUEUED}")

        self.state.transition(video.id, VideoStatus.DOWNLOADING)
        self.audio_dir.mkdir(parents=True, exist_ok=True)

        try:
            if video.source_type == SourceType.YOUTUBE:
                audio_path, duration = self._from_youtube(video.source_value)
            elif video.source_type == SourceType.UPLOAD:
                audio_path, duration = self._from_upload(upload or self._upload_from_row(video))
            elif video.source_type == SourceType.EXTERNAL:
                audio_path, duration = self._from_external(video.source_value)
            else:
                raise AcquisitionError(ErrorCode.INVALID_SOURCE,
                                       f"Unknown source type: {video.source_type}")

            self.state.transition(video.id, VideoStatus.AUDIO_READY,
                                  source_value=str(audio_path), duration=duration)
        except Exception as e:
            logger.error("Acquisition failed for video %s: %s", video.id, e)
            self.state.mark_failed(video.id)
            if isinstance(e, AcquisitionError):
                raise
            if isinstance(e, JobError):
                raise AcquisitionError(e.code, e.message) from e
            raise AcquisitionError(ErrorCode.DOWNLOAD_FAILED, str(e)) from e

        logger.info("Acquired video %s: %s (%.1fs)", video.id, audio_path, duration)
        return self.db.get_video(video.id)

    # ── Sources ───────────────────────────────────────────────────────

    def _from_youtube(self, url: str) -> tuple[Path, float]:
        validate_youtube_url(url)
        audio_path = download_youtube_audio(url, self.scratch_dir, self.audio_dir)
        try:
            duration = get_video_duration(fetch_metadata(url))
            if duration <= 0:
                duration = probe_duration(audio_path)
        except JobError:
            remove_file(audio_path)
            raise
        return audio_path, duration

    def _from_upload(self, upload: UploadedFile) -> tuple[Path, float]:
        source = Path(upload.path)
        if not source.is_file():
            raise AcquisitionError(ErrorCode.UPLOAD_MISSING, f"File not uploaded: {upload.path}")

        ext = Path(upload.original_name or source.name).suffix.lower()
        if ext in VIDEO_CONTAINER_EXTENSIONS:
            audio_path = convert_to_audio(source, unique_path(self.audio_dir, ARTIFACT_FORMAT))
            remove_file(source)
        else:
            audio_path = unique_path(self.audio_dir, ext or ARTIFACT_FORMAT)
            shutil.move(str(source), str(audio_path))

        try:
            return audio_path, probe_duration(audio_path)
        except JobError:
            remove_file(audio_path)
            raise

    def _from_external(self, url: str) -> tuple[Path, float]:
        validate_http_url(url)
        with ScratchSpace(self.scratch_dir) as scratch:
            raw_path = download_url(url, scratch.new_path(url_extension(url) or ".bin"),
                                    session=self.session)
            audio_path = convert_to_audio(raw_path, unique_path(self.audio_dir, ARTIFACT_FORMAT))

        try:
            return audio_path, probe_duration(audio_path)
        except JobError:
            remove_file(audio_path)
            raise

    @staticmethod
    def _upload_from_row(video: Video) -> UploadedFile:
        # Upload rows carry the temp file path until acquisition rewrites it
        return UploadedFile(path=video.source_value, original_name=Path(video.source_value).name)
