"""
Video status state machine.

    queued -> downloading -> audio_ready                (stage: acquisition)
    audio_ready -> transcribing -> transcribed          (stage: transcription)
    any non-terminal state -> failed

`transcribed` and `failed` are terminal. `audio_ready` closes the
acquisition stage and is the only state a transcription may start from.
"""

import logging

from studyscribe.core.constants import VideoStatus, PipelineStage
from studyscribe.core.db_sqlite import Database
from studyscribe.core.error_codes import InvalidTransitionError

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({VideoStatus.TRANSCRIBED, VideoStatus.FAILED})

_TRANSITIONS = {
    VideoStatus.QUEUED: {VideoStatus.DOWNLOADING},
    VideoStatus.DOWNLOADING: {VideoStatus.AUDIO_READY},
    VideoStatus.AUDIO_READY: {VideoStatus.TRANSCRIBING},
    VideoStatus.TRANSCRIBING: {VideoStatus.TRANSCRIBED},
}

_STAGE_OF = {
    VideoStatus.DOWNLOADING: PipelineStage.ACQUISITION,
    VideoStatus.AUDIO_READY: PipelineStage.ACQUISITION,
    VideoStatus.TRANSCRIBING: PipelineStage.TRANSCRIPTION,
    VideoStatus.TRANSCRIBED: PipelineStage.TRANSCRIPTION,
}


def can_transition(current: str, target: str) -> bool:
    if target == VideoStatus.FAILED:
        return current not in TERMINAL_STATUSES
    return target in _TRANSITIONS.get(current, ())


def is_ready_for_transcription(status: str) -> bool:
    return status == VideoStatus.AUDIO_READY


class VideoStateMachine:
    """The only writer of Video.status / Video.stage."""

    def __init__(self, db: Database):
        self.db = db

    def transition(self, video_id: str, target: str, **fields):
        """Move a video to `target`, writing any extra columns in the same update."""
        with self.db._lock:
            video = self.db.get_video(video_id)
            if video is None:
                raise InvalidTransitionError(None, f"Video {video_id} not found")
            if not can_transition(video.status, target):
                raise InvalidTransitionError(
                    None, f"Video {video_id}: {video.status} -> {target} not allowed")

            stage = _STAGE_OF.get(target, video.stage)
            self.db.update_video(video_id, status=target, stage=stage, **fields)
        logger.info("Video %s: %s -> %s", video_id, video.status, target)

    def mark_failed(self, video_id: str) -> bool:
        """
        Idempotent failure write. Returns True if the row now reads `failed`;
        a transcribed video is left untouched.
        """
        with self.db._lock:
            video = self.db.get_video(video_id)
            if video is None:
                logger.warning("Cannot mark missing video %s as failed", video_id)
                return False
            if video.status == VideoStatus.FAILED:
                return True
            if video.status == VideoStatus.TRANSCRIBED:
                logger.warning("Video %s already transcribed; not marking failed", video_id)
                return False
            self.db.update_video(video_id, status=VideoStatus.FAILED)
        logger.info("Video %s: %s -> %s", video_id, video.status, VideoStatus.FAILED)
        return True
