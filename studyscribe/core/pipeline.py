"""
Transcription pipeline for one video:
normalize -> chunk -> (upload -> create job -> poll) per segment -> merge -> persist.

Segments are processed strictly one after another. Any failure aborts the
run; results already collected are discarded and nothing is persisted.
Scratch files live inside one ScratchSpace and are removed on every exit.
"""

import logging
from pathlib import Path
from typing import Optional

from studyscribe.core.chunking import AudioChunker
from studyscribe.core.cleanup import ScratchSpace
from studyscribe.core.constants import ErrorCode, VideoStatus
from studyscribe.core.db_sqlite import Database
from studyscribe.core.error_codes import TranscriptionError
from studyscribe.core.merge import SegmentResult, assemble_transcript
from studyscribe.core.models_sqlite import Transcription
from studyscribe.core.state_machine import VideoStateMachine, is_ready_for_transcription
from studyscribe.core.summarizer import Summarizer
from studyscribe.core.transcribe_assemblyai import AssemblyAIClient

logger = logging.getLogger(__name__)


class TranscriptionPipeline:

    def __init__(self, db: Database, state: VideoStateMachine,
                 chunker: AudioChunker, client: AssemblyAIClient,
                 scratch_dir: Path, summarizer: Optional[Summarizer] = None):
        self.db = db
        self.state = state
        self.chunker = chunker
        self.client = client
        self.scratch_dir = Path(scratch_dir)
        self.summarizer = summarizer

    def run(self, video_id: str) -> Transcription:
        """
        Transcribe an `audio_ready` video. On any failure after the
        precondition check the video is marked `failed` and the error
        propagates; no transcription row is written.
        """
        video = self.db.get_video(video_id)
        if video is None:
            raise TranscriptionError(ErrorCode.VIDEO_NOT_FOUND, f"Video {video_id} not found")
        if not video.source_value or not is_ready_for_transcription(video.status):
            raise TranscriptionError(ErrorCode.NOT_READY,
                                     f"Video {video_id} not ready for transcription ({video.status})")

        self.state.transition(video.id, VideoStatus.TRANSCRIBING)
        try:
            results = self._transcribe_segments(video)
        except Exception as e:
            logger.error("Transcription failed for video %s: %s", video.id, e)
            self.state.mark_failed(video.id)
            raise

        assembled = assemble_transcript(results)
        transcription = self.db.create_transcription(
            video_id=video.id,
            language=assembled.language,
            content=assembled.content,
            content_json=assembled.content_json,
            confidence=assembled.confidence,
        )
        logger.info("Saved transcription %s for video %s", transcription.id, video.id)

        self.state.transition(video.id, VideoStatus.TRANSCRIBED)

        if self.summarizer is not None:
            self.summarizer.submit(transcription.id, transcription.content)

        return transcription

    def _transcribe_segments(self, video) -> list[SegmentResult]:
        with ScratchSpace(self.scratch_dir) as scratch:
            chunk_set = self.chunker.prepare_and_chunk(Path(video.source_value), scratch)
            total = len(chunk_set.segments)

            results = []
            for segment in chunk_set.segments:
                logger.info("Video %s: transcribing segment %d/%d (start=%ss)",
                            video.id, segment.index + 1, total, segment.start_seconds)
                raw = self.client.transcribe_segment(segment.path)
                results.append(SegmentResult(
                    index=segment.index,
                    start_seconds=segment.start_seconds,
                    text=raw.get('text') or '',
                    raw=raw,
                ))
        return results
