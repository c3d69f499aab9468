"""
Pipeline service: builds the pipeline objects once and exposes the
operations the request layer needs (create, submit, read, delete, recover).
"""

import logging
from pathlib import Path
from typing import Optional

from studyscribe.core.acquisition import AcquisitionWorker
from studyscribe.core.chunking import AudioChunker
from studyscribe.core.cleanup import remove_file
from studyscribe.core.config import AppConfig
from studyscribe.core.constants import SOURCE_TYPES, SourceType, VideoStatus, ErrorCode
from studyscribe.core.db_sqlite import Database
from studyscribe.core.instance_lock import InstanceLock, lock_path_for
from studyscribe.core.error_codes import AcquisitionError, SummarizationError
from studyscribe.core.job_queue import PipelineScheduler
from studyscribe.core.models_sqlite import Transcription, UploadedFile, Video
from studyscribe.core.pipeline import TranscriptionPipeline
from studyscribe.core.security_utils import is_within_directory
from studyscribe.core.state_machine import VideoStateMachine
from studyscribe.core.summarizer import GeminiProvider, Summarizer, SummaryProvider
from studyscribe.core.transcribe_assemblyai import AssemblyAIClient

logger = logging.getLogger(__name__)


class PipelineService:

    def __init__(self, db: Database, state: VideoStateMachine,
                 scheduler: PipelineScheduler, summarizer: Summarizer,
                 audio_dir: Path, instance_lock: InstanceLock | None = None):
        self.db = db
        self.state = state
        self.scheduler = scheduler
        self.summarizer = summarizer
        self.audio_dir = Path(audio_dir)
        self.instance_lock = instance_lock

    @classmethod
    def from_config(cls, config: AppConfig,
                    db: Database | None = None,
                    client: AssemblyAIClient | None = None,
                    summary_provider: Optional[SummaryProvider] = None,
                    chunker: AudioChunker | None = None,
                    acquisition: AcquisitionWorker | None = None) -> "PipelineService":
        db = db or Database(config.db_path)
        state = VideoStateMachine(db)

        if client is None:
            client = AssemblyAIClient(
                api_key=config.assemblyai_api_key,
                base_url=config.get('assemblyai_base_url'),
                poll_interval_sec=config.get('poll_interval_sec'),
                max_wait_sec=config.get('poll_max_wait_sec'),
                max_retries=config.get('poll_max_retries'),
            )

        if summary_provider is None:
            try:
                summary_provider = GeminiProvider(config.gemini_api_key)
            except SummarizationError as e:
                logger.warning("Summaries disabled: %s", e.message)

        summarizer = Summarizer(
            db, summary_provider,
            model=config.get('summary_model'),
            language=config.get('summary_language'),
        )
        acquisition = acquisition or AcquisitionWorker(
            db, state, config.scratch_dir, config.audio_dir,
        )
        pipeline = TranscriptionPipeline(
            db, state,
            chunker or AudioChunker(config.get('segment_seconds')),
            client, config.scratch_dir, summarizer,
        )
        scheduler = PipelineScheduler(
            state, acquisition, pipeline,
            auto_transcribe=config.get('auto_transcribe', True),
        )
        instance_lock = InstanceLock(lock_path_for(config.db_path))
        instance_lock.acquire_shared()
        return cls(db, state, scheduler, summarizer, config.audio_dir, instance_lock)

    # ── Submission ────────────────────────────────────────────────────

    def create_video(self, owner_id: str, source_type: str, source_value: str,
                     upload: UploadedFile | None = None, submit: bool = True) -> Video:
        """
        Create a `queued` video and hand it to the acquisition queue.
        With submit=False the row is only persisted; the next `recover`
        pass picks it up.
        """
        if source_type not in SOURCE_TYPES:
            raise AcquisitionError(ErrorCode.INVALID_SOURCE, f"Unknown source type: {source_type}")

        video = self.db.create_video(owner_id, source_type, source_value)
        if submit:
            self.scheduler.submit_acquisition(video.id, upload)
        return video

    def submit_transcription(self, video_id: str):
        self.scheduler.submit_transcription(video_id)

    # ── Reads ─────────────────────────────────────────────────────────

    def get_video(self, video_id: str) -> Video | None:
        return self.db.get_video(video_id)

    def get_transcriptions(self, video_id: str) -> list[Transcription]:
        return self.db.get_transcriptions_for_video(video_id)

    # ── Deletion ──────────────────────────────────────────────────────

    def delete_video(self, video_id: str) -> bool:
        """Delete a video, its transcriptions and its local audio artifact."""
        video = self.db.get_video(video_id)
        if video is None:
            return False

        artifact = Path(video.source_value)
        if video.source_value and is_within_directory(self.audio_dir, artifact) and artifact.is_file():
            remove_file(artifact)

        self.db.delete_video(video_id)
        logger.info("Deleted video %s", video_id)
        return True

    # ── Lifecycle ─────────────────────────────────────────────────────

    def recover(self) -> list[str]:
        """
        Pass over rows left behind by a previous process.
        In-flight rows cannot be resumed and are failed; queued rows whose
        source can be fetched again are resubmitted in creation order.

        Runs only while no other process holds the instance lock on this
        database; otherwise its rows are live and nothing is touched.
        """
        if self.instance_lock is not None and not self.instance_lock.try_exclusive():
            logger.info("Another process is using %s; skipping recovery",
                        self.instance_lock.path)
            return []

        try:
            return self._recover_rows()
        finally:
            if self.instance_lock is not None:
                self.instance_lock.downgrade()

    def _recover_rows(self) -> list[str]:
        for video in self.db.get_videos_by_status(VideoStatus.DOWNLOADING, VideoStatus.TRANSCRIBING):
            logger.warning("Video %s was interrupted while %s", video.id, video.status)
            self.state.mark_failed(video.id)

        resubmitted = []
        for video in self.db.get_videos_by_status(VideoStatus.QUEUED):
            if video.source_type == SourceType.UPLOAD and not Path(video.source_value).is_file():
                self.state.mark_failed(video.id)
                continue
            self.scheduler.submit_acquisition(video.id)
            resubmitted.append(video.id)

        if resubmitted:
            logger.info("Resubmitted %d queued videos", len(resubmitted))
        return resubmitted

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self.scheduler.wait_idle(timeout)

    def shutdown(self, wait: bool = True):
        self.scheduler.shutdown()
        self.summarizer.shutdown(wait=wait)
        self.db.close()
        if self.instance_lock is not None:
            self.instance_lock.release()
