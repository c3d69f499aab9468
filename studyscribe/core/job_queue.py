"""
Job queues and the pipeline scheduler.

Each SerialJobQueue is a FIFO drained by exactly one worker thread, so at
most one job per queue runs at a time. Acquisition and transcription get a
queue each and never block one another. A job that raises gets exactly one
compensating action from the queue's error handler; it is never retried.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from studyscribe.core.acquisition import AcquisitionWorker
from studyscribe.core.error_codes import JobError
from studyscribe.core.models_sqlite import UploadedFile
from studyscribe.core.pipeline import TranscriptionPipeline
from studyscribe.core.state_machine import VideoStateMachine

logger = logging.getLogger(__name__)


@dataclass
class QueuedJob:
    video_id: str
    func: Callable[..., Any]
    args: tuple = field(default_factory=tuple)

    def run(self):
        return self.func(*self.args)


_STOP = object()


class SerialJobQueue:
    """
    FIFO queue with a single lazily started worker thread.
    `enqueue` returns immediately; jobs run in submission order.
    """

    def __init__(self, name: str,
                 on_error: Optional[Callable[[QueuedJob, Exception], None]] = None):
        self.name = name
        self.on_error = on_error
        self._queue: queue.Queue = queue.Queue()
        self._worker_thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()
        self._current_job: Optional[QueuedJob] = None

    # ── Queue management ──────────────────────────────────────────────

    def enqueue(self, video_id: str, func: Callable[..., Any], *args) -> QueuedJob:
        job = QueuedJob(video_id=video_id, func=func, args=args)
        self._queue.put(job)
        self._ensure_worker()
        logger.info("Queued %s job for video %s (pending=%d)",
                    self.name, video_id, self.pending())
        return job

    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def current_video_id(self) -> Optional[str]:
        job = self._current_job
        return job.video_id if job else None

    def join(self, timeout: float | None = None) -> bool:
        """Wait until every enqueued job has finished. False on timeout."""
        cond = self._queue.all_tasks_done
        with cond:
            return cond.wait_for(lambda: self._queue.unfinished_tasks == 0, timeout)

    def stop(self, timeout: float | None = None):
        """Let queued jobs drain, then stop the worker."""
        thread = self._worker_thread
        if thread is None or not thread.is_alive():
            return
        self._queue.put(_STOP)
        thread.join(timeout)

    # ── Worker loop ───────────────────────────────────────────────────

    def _ensure_worker(self):
        with self._start_lock:
            if self._worker_thread is not None and self._worker_thread.is_alive():
                return
            self._worker_thread = threading.Thread(
                target=self._worker_loop, name=f"{self.name}-worker", daemon=True,
            )
            self._worker_thread.start()

    def _worker_loop(self):
        """Main worker loop: processes one job at a time."""
        while True:
            job = self._queue.get()
            if job is _STOP:
                self._queue.task_done()
                break

            self._current_job = job
            try:
                job.run()
            except Exception as e:
                self._handle_job_error(job, e)
            finally:
                self._current_job = None
                self._queue.task_done()

    def _handle_job_error(self, job: QueuedJob, error: Exception):
        code = error.code if isinstance(error, JobError) else "ERR_UNEXPECTED"
        logger.error("%s job for video %s failed [%s]: %s",
                     self.name, job.video_id, code, error,
                     exc_info=not isinstance(error, JobError))
        if self.on_error is None:
            return
        try:
            self.on_error(job, error)
        except Exception:
            logger.exception("Compensation for video %s failed", job.video_id)


class PipelineScheduler:
    """Routes videos through the acquisition and transcription queues."""

    def __init__(self, state: VideoStateMachine,
                 acquisition: AcquisitionWorker,
                 transcription: TranscriptionPipeline,
                 auto_transcribe: bool = True,
                 acquisition_queue: SerialJobQueue | None = None,
                 transcription_queue: SerialJobQueue | None = None):
        self.state = state
        self.acquisition = acquisition
        self.transcription = transcription
        self.auto_transcribe = auto_transcribe

        self.acquisition_queue = acquisition_queue or SerialJobQueue("acquisition")
        self.transcription_queue = transcription_queue or SerialJobQueue("transcription")
        self.acquisition_queue.on_error = self._compensate
        self.transcription_queue.on_error = self._compensate

    def submit_acquisition(self, video_id: str, upload: UploadedFile | None = None) -> QueuedJob:
        return self.acquisition_queue.enqueue(video_id, self._acquire, video_id, upload)

    def submit_transcription(self, video_id: str) -> QueuedJob:
        return self.transcription_queue.enqueue(video_id, self.transcription.run, video_id)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until both queues are drained. Acquisition first, since it feeds transcription."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for q in (self.acquisition_queue, self.transcription_queue):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not q.join(remaining):
                return False
        return True

    def shutdown(self, timeout: float | None = None):
        self.acquisition_queue.stop(timeout)
        self.transcription_queue.stop(timeout)

    def _acquire(self, video_id: str, upload: UploadedFile | None):
        self.acquisition.acquire(video_id, upload)
        if self.auto_transcribe:
            self.submit_transcription(video_id)

    def _compensate(self, job: QueuedJob, error: Exception):
        self.state.mark_failed(job.video_id)
