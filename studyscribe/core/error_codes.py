"""
Standardised error handling for studyscribe.

Every pipeline failure is a JobError carrying a stable ErrorCode. The
subclasses below name the stage that failed; the job queue catches them all
at its boundary and turns them into a single `failed` status write.
"""

from studyscribe.core.constants import ErrorCode


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    default_code = "ERR_UNEXPECTED"

    def __init__(self, code: str | None, message: str):
        self.code = code or self.default_code
        self.message = message
        super().__init__(f"[{self.code}] {message}")


class MediaError(JobError):
    """ffmpeg / ffprobe invocation failed."""
    default_code = ErrorCode.FFMPEG_NORMALIZE


class AcquisitionError(JobError):
    """Download, conversion or a missing upload."""
    default_code = ErrorCode.DOWNLOAD_FAILED


class ChunkingError(JobError):
    """Normalization, probing or splitting failed before any upload."""
    default_code = ErrorCode.CHUNKING


class TranscriptionError(JobError):
    """Base class for ASR provider failures."""
    default_code = ErrorCode.NETWORK_TRANSIENT


class UploadError(TranscriptionError):
    default_code = ErrorCode.ASR_UPLOAD_FAILED


class JobCreationError(TranscriptionError):
    default_code = ErrorCode.ASR_JOB_CREATE_FAILED


class ProviderJobFailedError(TranscriptionError):
    """The provider reported the job as failed."""
    default_code = ErrorCode.ASR_JOB_FAILED


class PollTimeoutError(TranscriptionError):
    """Neither terminal state was seen within the wait or retry ceiling."""
    default_code = ErrorCode.POLL_TIMEOUT


class SummarizationError(JobError):
    """Summary generation failed. Logged, never fails a job."""
    default_code = ErrorCode.SUMMARY_FAILED


class InvalidTransitionError(JobError):
    default_code = ErrorCode.INVALID_TRANSITION
