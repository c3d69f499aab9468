#!/usr/bin/env python3
"""
Tests for the job-level pieces: chunking with a faked ffmpeg, the AssemblyAI
client against a mocked HTTP session, the serial job queues, acquisition,
summaries, and a full submit -> transcribed run.
"""

import io
import sys
import json
import sqlite3
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

import requests

from studyscribe.core.acquisition import AcquisitionWorker
from studyscribe.core.chunking import AudioChunker
from studyscribe.core.cleanup import ScratchSpace
from studyscribe.core.config import AppConfig
from studyscribe.core.constants import ErrorCode, SourceType, VideoStatus, TRANSCRIPT_FEATURES
from studyscribe.core.db_sqlite import Database
from studyscribe.core.instance_lock import InstanceLock, lock_path_for
from studyscribe.core.error_codes import (
    AcquisitionError, ChunkingError, TranscriptionError, UploadError, JobCreationError,
    ProviderJobFailedError, PollTimeoutError,
)
from studyscribe.core.job_queue import PipelineScheduler, SerialJobQueue
from studyscribe.core.media import extract_segment
from studyscribe.core.models_sqlite import UploadedFile
from studyscribe.core.service import PipelineService
from studyscribe.core.state_machine import VideoStateMachine
from studyscribe.core.summarizer import Summarizer
from studyscribe.core.transcribe_assemblyai import AssemblyAIClient


# ── Fakes ─────────────────────────────────────────────────────────────

def fake_media(duration, fail_on_call=None):
    """
    Stand-in for run_subprocess_capture: ffprobe reports `duration`, ffmpeg
    writes its output file. The ffmpeg call numbered `fail_on_call` (1-based)
    exits non-zero instead.
    """
    calls = []

    def run(args, timeout=300, **kwargs):
        if args[0] == "ffprobe":
            return subprocess.CompletedProcess(args, 0, stdout=f"{duration}\n", stderr="")
        calls.append(args)
        if fail_on_call == len(calls):
            return subprocess.CompletedProcess(args, 1, stdout="", stderr="boom")
        Path(args[-1]).write_bytes(b"RIFF")
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

    run.calls = calls
    return run


def _response(payload, status=200):
    resp = mock.Mock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = json.dumps(payload)
    resp.content = resp.text.encode()
    return resp


class FakeAssemblyAI:
    """Mock session that behaves like the upload/transcript/poll endpoints."""

    def __init__(self, statuses=None, error=None, fail_jobs=()):
        # statuses: sequence returned by successive polls of each job
        self.statuses = statuses or ['completed']
        self.error = error
        # jobs whose polls report `failed` regardless of `statuses`
        self.fail_jobs = set(fail_jobs)
        self.session = mock.Mock()
        self.session.post.side_effect = self._post
        self.session.get.side_effect = self._get
        self.uploads = 0
        self.jobs = []
        self._polls = {}

    def _post(self, url, headers=None, data=None, json=None, timeout=None):
        if url.endswith('/upload'):
            self.uploads += 1
            return _response({'upload_url': f"https://cdn.example/{self.uploads}"})
        job_id = f"job-{len(self.jobs) + 1}"
        self.jobs.append((job_id, json))
        return _response({'id': job_id, 'status': 'queued'})

    def _get(self, url, headers=None, timeout=None):
        job_id = url.rsplit('/', 1)[-1]
        n = self._polls.get(job_id, 0)
        self._polls[job_id] = n + 1
        status = self.statuses[min(n, len(self.statuses) - 1)]
        if job_id in self.fail_jobs:
            status = 'failed'
        payload = {'id': job_id, 'status': status}
        if status == 'completed':
            number = job_id.split('-')[1]
            payload.update({
                'text': f"This is the spoken content of part number {number}.",
                'confidence': 0.9,
                'language_code': 'en',
            })
        if status == 'failed':
            payload['error'] = self.error
        return _response(payload)

    def client(self, **kwargs):
        kwargs.setdefault('sleep', lambda s: None)
        return AssemblyAIClient(api_key="test-key", session=self.session, **kwargs)


class FakeSummaryProvider:
    def __init__(self, text="- Tópico 1\n  - Subtópico", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def generate(self, model, prompt):
        self.calls.append((model, prompt))
        if self.error:
            raise self.error
        return self.text


class TempDirTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        self.scratch_dir = self.root / "tmp"
        self.audio_dir = self.root / "audio"
        self.db = Database(self.root / "test.db")
        self.state = VideoStateMachine(self.db)

    def tearDown(self):
        self.db.close()
        self.tmpdir.cleanup()

    def scratch_files(self):
        if not self.scratch_dir.exists():
            return []
        return list(self.scratch_dir.iterdir())


# ── Chunking ──────────────────────────────────────────────────────────

class TestAudioChunker(TempDirTestCase):

    def _chunk(self, duration, fail_on_call=None):
        source = self.root / "source.mp3"
        source.write_bytes(b"ID3")
        fake = fake_media(duration, fail_on_call)
        with mock.patch("studyscribe.core.media.run_subprocess_capture", side_effect=fake):
            with ScratchSpace(self.scratch_dir) as scratch:
                chunk_set = AudioChunker().prepare_and_chunk(source, scratch)
                existing = [s.path.exists() for s in chunk_set.segments]
        return chunk_set, existing, fake

    def test_short_audio_is_sent_whole(self):
        chunk_set, existing, fake = self._chunk(600)
        self.assertEqual(len(chunk_set.segments), 1)
        self.assertEqual(chunk_set.segments[0].start_seconds, 0)
        self.assertEqual(chunk_set.segments[0].path, chunk_set.temp_files[0])
        self.assertEqual(len(fake.calls), 1)   # normalization only
        self.assertEqual(existing, [True])

    def test_1200_seconds_makes_two_segments(self):
        chunk_set, existing, fake = self._chunk(1200)
        self.assertEqual([s.start_seconds for s in chunk_set.segments], [0, 900])
        self.assertEqual([s.duration_seconds for s in chunk_set.segments], [900, 300])
        self.assertEqual(existing, [True, True])
        self.assertEqual(chunk_set.total_duration, 1200.0)

    def test_2700_seconds_makes_three_segments(self):
        chunk_set, _, fake = self._chunk(2700)
        self.assertEqual([s.start_seconds for s in chunk_set.segments], [0, 900, 1800])
        self.assertEqual(len(fake.calls), 4)

    def test_normalization_uses_asr_format(self):
        _, _, fake = self._chunk(600)
        args = fake.calls[0]
        for flag, value in (("-ac", "1"), ("-ar", "16000"), ("-codec:a", "pcm_s16le"), ("-f", "wav")):
            self.assertEqual(args[args.index(flag) + 1], value)
        self.assertIn("-vn", args)

    def test_segment_times_are_fixed_decimal(self):
        out = self.root / "seg.wav"
        fake = fake_media(1)
        with mock.patch("studyscribe.core.media.run_subprocess_capture", side_effect=fake):
            extract_segment(self.root / "in.wav", out, 900, 9.999996564147295e-08)
        args = fake.calls[0]
        self.assertEqual(args[args.index("-ss") + 1], "900.000")
        self.assertEqual(args[args.index("-t") + 1], "0.000")

    def test_segment_args_for_fractional_tail(self):
        _, _, fake = self._chunk(1200.000063)
        tail = fake.calls[-1]
        self.assertEqual(tail[tail.index("-ss") + 1], "900.000")
        self.assertEqual(tail[tail.index("-t") + 1], "300.000")
        for args in fake.calls[1:]:
            self.assertNotIn("e", args[args.index("-t") + 1])

    def test_scratch_files_removed_after_scope(self):
        self._chunk(2700)
        self.assertEqual(self.scratch_files(), [])

    def test_normalize_failure(self):
        with self.assertRaises(ChunkingError) as ctx:
            self._chunk(1200, fail_on_call=1)
        self.assertEqual(ctx.exception.code, ErrorCode.FFMPEG_NORMALIZE)
        self.assertEqual(self.scratch_files(), [])

    def test_segment_failure_cleans_partial_output(self):
        with self.assertRaises(ChunkingError) as ctx:
            self._chunk(2700, fail_on_call=3)
        self.assertEqual(ctx.exception.code, ErrorCode.CHUNKING)
        self.assertEqual(self.scratch_files(), [])


# ── AssemblyAI client ─────────────────────────────────────────────────

class TestAssemblyAIClient(TempDirTestCase):

    def setUp(self):
        super().setUp()
        self.audio = self.root / "segment.wav"
        self.audio.write_bytes(b"RIFF")

    def test_missing_file_fails_before_network(self):
        fake = FakeAssemblyAI()
        with self.assertRaises(UploadError):
            fake.client().upload(self.root / "missing.wav")
        fake.session.post.assert_not_called()

    def test_missing_api_key(self):
        fake = FakeAssemblyAI()
        with mock.patch.dict("os.environ", {}, clear=True):
            client = AssemblyAIClient(api_key=None, session=fake.session)
        with self.assertRaises(TranscriptionError) as ctx:
            client.upload(self.audio)
        self.assertEqual(ctx.exception.code, ErrorCode.MISSING_API_KEY)

    def test_upload_sends_bearer_and_octet_stream(self):
        fake = FakeAssemblyAI()
        self.assertEqual(fake.client().upload(self.audio), "https://cdn.example/1")
        headers = fake.session.post.call_args.kwargs['headers']
        self.assertEqual(headers['Authorization'], "Bearer test-key")
        self.assertEqual(headers['Content-Type'], "application/octet-stream")

    def test_upload_without_url_fails(self):
        session = mock.Mock()
        session.post.return_value = _response({'detail': 'nope'})
        client = AssemblyAIClient(api_key="k", session=session)
        with self.assertRaises(UploadError):
            client.upload(self.audio)

    def test_upload_network_error(self):
        session = mock.Mock()
        session.post.side_effect = requests.exceptions.ConnectionError("reset")
        client = AssemblyAIClient(api_key="k", session=session)
        with self.assertRaises(UploadError):
            client.upload(self.audio)

    def test_create_job_sends_features(self):
        fake = FakeAssemblyAI()
        job = fake.client().create_job("https://cdn.example/1")
        self.assertEqual(job['id'], "job-1")
        body = fake.jobs[0][1]
        self.assertEqual(body['audio_url'], "https://cdn.example/1")
        for key, value in TRANSCRIPT_FEATURES.items():
            self.assertEqual(body[key], value)

    def test_create_job_without_id(self):
        session = mock.Mock()
        session.post.return_value = _response({'error': 'bad audio_url'})
        with self.assertRaises(JobCreationError):
            AssemblyAIClient(api_key="k", session=session).create_job("u")

    def test_create_job_http_error(self):
        session = mock.Mock()
        session.post.return_value = _response({'error': 'unauthorized'}, status=401)
        with self.assertRaises(JobCreationError):
            AssemblyAIClient(api_key="k", session=session).create_job("u")

    def test_poll_until_completed(self):
        fake = FakeAssemblyAI(statuses=['queued', 'processing', 'completed'])
        sleeps = []
        client = fake.client(sleep=sleeps.append, poll_interval_sec=5)
        result = client.poll("job-1")
        self.assertEqual(result['status'], 'completed')
        self.assertEqual(sleeps, [5, 5])

    def test_poll_failed_job(self):
        fake = FakeAssemblyAI(statuses=['processing', 'failed'], error="Audio has no speech")
        with self.assertRaises(ProviderJobFailedError) as ctx:
            fake.client().poll("job-1")
        self.assertIn("Audio has no speech", str(ctx.exception))

    def test_poll_failed_job_without_error_text(self):
        fake = FakeAssemblyAI(statuses=['failed'])
        with self.assertRaises(ProviderJobFailedError) as ctx:
            fake.client().poll("job-1")
        self.assertEqual(ctx.exception.code, ErrorCode.ASR_JOB_FAILED)

    def test_poll_wall_clock_timeout(self):
        fake = FakeAssemblyAI(statuses=['processing'])
        ticks = iter(range(0, 100000, 10))
        client = fake.client(clock=lambda: next(ticks), max_wait_sec=60, max_retries=1000)
        with self.assertRaises(PollTimeoutError) as ctx:
            client.poll("job-1")
        self.assertEqual(ctx.exception.code, ErrorCode.POLL_TIMEOUT)

    def test_poll_retry_ceiling(self):
        fake = FakeAssemblyAI(statuses=['processing'])
        client = fake.client(max_retries=3)
        with self.assertRaises(PollTimeoutError) as ctx:
            client.poll("job-1")
        self.assertEqual(ctx.exception.code, ErrorCode.POLL_RETRIES_EXHAUSTED)
        self.assertEqual(fake.session.get.call_count, 3)

    def test_poll_http_error(self):
        session = mock.Mock()
        session.get.return_value = _response({'error': 'server'}, status=500)
        client = AssemblyAIClient(api_key="k", session=session, sleep=lambda s: None)
        with self.assertRaises(TranscriptionError):
            client.poll("job-1")

    def test_transcribe_segment(self):
        fake = FakeAssemblyAI(statuses=['processing', 'completed'])
        result = fake.client().transcribe_segment(self.audio)
        self.assertEqual(result['id'], "job-1")
        self.assertIn("part number 1", result['text'])


# ── Job queues ────────────────────────────────────────────────────────

class TestSerialJobQueue(unittest.TestCase):

    def test_fifo_and_single_worker(self):
        q = SerialJobQueue("test")
        order = []
        active = [0]
        peak = [0]
        lock = threading.Lock()

        def job(n):
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
            time.sleep(0.01)
            order.append(n)
            with lock:
                active[0] -= 1

        for n in range(6):
            q.enqueue(str(n), job, n)
        self.assertTrue(q.join(timeout=5))
        self.assertEqual(order, list(range(6)))
        self.assertEqual(peak[0], 1)
        q.stop(timeout=2)

    def test_enqueue_does_not_wait_for_job(self):
        q = SerialJobQueue("test")
        release = threading.Event()
        started = threading.Event()

        def job():
            started.set()
            release.wait(5)

        q.enqueue("v1", job)
        self.assertTrue(started.wait(2))
        self.assertEqual(q.current_video_id, "v1")
        self.assertFalse(q.join(timeout=0.05))
        release.set()
        self.assertTrue(q.join(timeout=5))
        q.stop(timeout=2)

    def test_error_handler_runs_once_and_queue_continues(self):
        errors = []
        q = SerialJobQueue("test", on_error=lambda job, e: errors.append((job.video_id, e)))
        done = []

        def bad():
            raise ValueError("broken")

        q.enqueue("v1", bad)
        q.enqueue("v2", done.append, "ok")
        self.assertTrue(q.join(timeout=5))
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0][0], "v1")
        self.assertEqual(done, ["ok"])
        q.stop(timeout=2)


class TestPipelineScheduler(TempDirTestCase):

    def test_failed_job_marks_video_failed(self):
        video = self.db.create_video("1", SourceType.YOUTUBE, "https://youtu.be/dQw4w9WgXcQ")
        acquisition = mock.Mock()
        acquisition.acquire.side_effect = RuntimeError("disk full")
        scheduler = PipelineScheduler(self.state, acquisition, mock.Mock())
        scheduler.submit_acquisition(video.id)
        self.assertTrue(scheduler.wait_idle(timeout=5))
        self.assertEqual(self.db.get_video(video.id).status, VideoStatus.FAILED)
        scheduler.shutdown(timeout=2)

    def test_acquisition_chains_into_transcription(self):
        acquisition = mock.Mock()
        transcription = mock.Mock()
        scheduler = PipelineScheduler(self.state, acquisition, transcription)
        scheduler.submit_acquisition("v1")
        self.assertTrue(scheduler.wait_idle(timeout=5))
        acquisition.acquire.assert_called_once_with("v1", None)
        transcription.run.assert_called_once_with("v1")
        scheduler.shutdown(timeout=2)

    def test_no_chaining_when_disabled(self):
        transcription = mock.Mock()
        scheduler = PipelineScheduler(self.state, mock.Mock(), transcription, auto_transcribe=False)
        scheduler.submit_acquisition("v1")
        self.assertTrue(scheduler.wait_idle(timeout=5))
        transcription.run.assert_not_called()
        scheduler.shutdown(timeout=2)

    def test_queues_do_not_block_each_other(self):
        release = threading.Event()
        acquisition = mock.Mock()
        acquisition.acquire.side_effect = lambda video_id, upload: release.wait(5)
        transcription = mock.Mock()
        scheduler = PipelineScheduler(self.state, acquisition, transcription, auto_transcribe=False)

        scheduler.submit_acquisition("slow")
        scheduler.submit_transcription("other")
        self.assertTrue(scheduler.transcription_queue.join(timeout=2))
        transcription.run.assert_called_once_with("other")

        release.set()
        self.assertTrue(scheduler.wait_idle(timeout=5))
        scheduler.shutdown(timeout=2)


# ── Acquisition ───────────────────────────────────────────────────────

def _fake_convert(input_path, output_path):
    Path(output_path).write_bytes(b"ID3")
    return Path(output_path)


class TestAcquisition(TempDirTestCase):

    def setUp(self):
        super().setUp()
        self.uploads = self.root / "uploads"
        self.uploads.mkdir()
        self.session = mock.MagicMock()
        self.worker = AcquisitionWorker(self.db, self.state, self.scratch_dir,
                                        self.audio_dir, session=self.session)

    def _upload(self, name):
        path = self.uploads / name
        path.write_bytes(b"data")
        video = self.db.create_video("1", SourceType.UPLOAD, str(path))
        return video, UploadedFile(path=str(path), original_name=name)

    @mock.patch("studyscribe.core.acquisition.probe_duration", return_value=300.0)
    @mock.patch("studyscribe.core.acquisition.convert_to_audio", side_effect=_fake_convert)
    def test_video_upload_is_converted(self, convert, duration):
        video, upload = self._upload("lecture.MP4")
        result = self.worker.acquire(video.id, upload)
        self.assertEqual(result.status, VideoStatus.AUDIO_READY)
        self.assertEqual(result.duration, 300.0)
        artifact = Path(result.source_value)
        self.assertEqual(artifact.parent, self.audio_dir)
        self.assertEqual(artifact.suffix, ".mp3")
        self.assertTrue(artifact.exists())
        self.assertFalse(Path(upload.path).exists())
        convert.assert_called_once()

    @mock.patch("studyscribe.core.acquisition.probe_duration", return_value=120.0)
    @mock.patch("studyscribe.core.acquisition.convert_to_audio", side_effect=_fake_convert)
    def test_audio_upload_is_moved(self, convert, duration):
        video, upload = self._upload("notes.m4a")
        result = self.worker.acquire(video.id, upload)
        artifact = Path(result.source_value)
        self.assertEqual(artifact.suffix, ".m4a")
        self.assertTrue(artifact.exists())
        self.assertFalse(Path(upload.path).exists())
        convert.assert_not_called()

    def test_missing_upload_fails_video(self):
        video = self.db.create_video("1", SourceType.UPLOAD, str(self.uploads / "gone.mp3"))
        with self.assertRaises(AcquisitionError) as ctx:
            self.worker.acquire(video.id)
        self.assertEqual(ctx.exception.code, ErrorCode.UPLOAD_MISSING)
        self.assertEqual(self.db.get_video(video.id).status, VideoStatus.FAILED)

    @mock.patch("studyscribe.core.acquisition.probe_duration", return_value=42.0)
    @mock.patch("studyscribe.core.acquisition.convert_to_audio", side_effect=_fake_convert)
    def test_external_url_download_and_convert(self, convert, duration):
        resp = mock.MagicMock()
        resp.iter_content.return_value = [b"abc", b"", b"def"]
        self.session.get.return_value.__enter__.return_value = resp
        video = self.db.create_video("1", SourceType.EXTERNAL, "https://files.example/talk.webm")

        result = self.worker.acquire(video.id)
        self.assertEqual(result.status, VideoStatus.AUDIO_READY)
        self.assertEqual(Path(result.source_value).suffix, ".mp3")
        raw_path = convert.call_args.args[0]
        self.assertEqual(raw_path.suffix, ".webm")
        self.assertEqual(self.scratch_files(), [])

    def test_external_download_error(self):
        self.session.get.side_effect = requests.exceptions.ConnectionError("refused")
        video = self.db.create_video("1", SourceType.EXTERNAL, "https://files.example/talk.mp4")
        with self.assertRaises(AcquisitionError) as ctx:
            self.worker.acquire(video.id)
        self.assertEqual(ctx.exception.code, ErrorCode.DOWNLOAD_FAILED)
        self.assertEqual(self.db.get_video(video.id).status, VideoStatus.FAILED)
        self.assertEqual(self.scratch_files(), [])

    def test_invalid_youtube_url(self):
        video = self.db.create_video("1", SourceType.YOUTUBE, "https://example.com/watch")
        with self.assertRaises(AcquisitionError) as ctx:
            self.worker.acquire(video.id)
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_URL)
        self.assertEqual(self.db.get_video(video.id).status, VideoStatus.FAILED)

    def test_only_queued_videos_are_acquired(self):
        video = self.db.create_video("1", SourceType.YOUTUBE, "https://youtu.be/dQw4w9WgXcQ",
                                     status=VideoStatus.TRANSCRIBED)
        with self.assertRaises(AcquisitionError) as ctx:
            self.worker.acquire(video.id)
        self.assertEqual(ctx.exception.code, ErrorCode.NOT_READY)
        self.assertEqual(self.db.get_video(video.id).status, VideoStatus.TRANSCRIBED)


# ── Summaries ─────────────────────────────────────────────────────────

LONG_TEXT = "The lecture covers photosynthesis, the light reactions and the Calvin cycle in detail."


class TestSummarizer(TempDirTestCase):

    def setUp(self):
        super().setUp()
        video = self.db.create_video("1", SourceType.YOUTUBE, "https://youtu.be/dQw4w9WgXcQ")
        self.transcription = self.db.create_transcription(video.id, "en", LONG_TEXT, {'chunks': []}, 0.9)

    def _summary(self):
        return self.db.get_transcription(self.transcription.id).summary

    def test_summary_saved(self):
        provider = FakeSummaryProvider()
        summarizer = Summarizer(self.db, provider)
        future = summarizer.submit(self.transcription.id, LONG_TEXT)
        self.assertEqual(future.result(timeout=5), "- Tópico 1\n  - Subtópico")
        self.assertEqual(self._summary(), "- Tópico 1\n  - Subtópico")
        model, prompt = provider.calls[0]
        self.assertEqual(model, "gemini-2.5-flash")
        self.assertIn("Portuguese", prompt)
        self.assertIn(LONG_TEXT, prompt)
        summarizer.shutdown()

    def test_short_text_yields_empty_summary(self):
        provider = FakeSummaryProvider()
        summarizer = Summarizer(self.db, provider)
        self.assertEqual(summarizer.submit(self.transcription.id, "too short").result(timeout=5), "")
        self.assertEqual(self._summary(), "")
        self.assertEqual(provider.calls, [])
        summarizer.shutdown()

    def test_provider_failure_leaves_summary_null(self):
        hook = mock.Mock()
        summarizer = Summarizer(self.db, FakeSummaryProvider(error=RuntimeError("quota")),
                                on_complete=hook)
        self.assertIsNone(summarizer.submit(self.transcription.id, LONG_TEXT).result(timeout=5))
        self.assertIsNone(self._summary())
        hook.assert_called_once_with(self.transcription.id, None)
        summarizer.shutdown()

    def test_storage_failure_is_logged(self):
        hook = mock.Mock()
        summarizer = Summarizer(self.db, FakeSummaryProvider(), on_complete=hook)
        with mock.patch.object(self.db, 'set_summary',
                               side_effect=sqlite3.OperationalError("database is locked")):
            with self.assertLogs("studyscribe.core.summarizer", level="ERROR") as logs:
                future = summarizer.submit(self.transcription.id, LONG_TEXT)
                self.assertIsNone(future.result(timeout=5))
        self.assertIn("database is locked", "\n".join(logs.output))
        hook.assert_called_once_with(self.transcription.id, None)
        summarizer.shutdown()

    def test_no_provider(self):
        summarizer = Summarizer(self.db, None)
        self.assertIsNone(summarizer.submit(self.transcription.id, LONG_TEXT).result(timeout=5))
        self.assertIsNone(self._summary())
        summarizer.shutdown()

    def test_hook_failure_is_contained(self):
        summarizer = Summarizer(self.db, FakeSummaryProvider(),
                                on_complete=mock.Mock(side_effect=RuntimeError("hook")))
        self.assertTrue(summarizer.submit(self.transcription.id, LONG_TEXT).result(timeout=5))
        summarizer.shutdown()


# ── Service ───────────────────────────────────────────────────────────

class TestPipelineService(TempDirTestCase):

    def setUp(self):
        super().setUp()
        self.scheduler = mock.Mock()
        self.service = PipelineService(self.db, self.state, self.scheduler,
                                       mock.Mock(), self.audio_dir)

    def test_create_video_queues_acquisition(self):
        video = self.service.create_video("7", SourceType.YOUTUBE, "https://youtu.be/dQw4w9WgXcQ")
        self.assertEqual(video.status, VideoStatus.QUEUED)
        self.scheduler.submit_acquisition.assert_called_once_with(video.id, None)

    def test_create_video_rejects_unknown_source(self):
        with self.assertRaises(AcquisitionError) as ctx:
            self.service.create_video("7", "ftp", "ftp://x")
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_SOURCE)
        self.scheduler.submit_acquisition.assert_not_called()

    def test_delete_removes_artifact(self):
        self.audio_dir.mkdir()
        artifact = self.audio_dir / "a.mp3"
        artifact.write_bytes(b"ID3")
        video = self.db.create_video("1", SourceType.YOUTUBE, str(artifact),
                                     status=VideoStatus.TRANSCRIBED)
        self.assertTrue(self.service.delete_video(video.id))
        self.assertFalse(artifact.exists())
        self.assertIsNone(self.service.get_video(video.id))
        self.assertFalse(self.service.delete_video(video.id))

    def test_delete_leaves_files_outside_audio_dir(self):
        outside = self.root / "keep.mp3"
        outside.write_bytes(b"ID3")
        video = self.db.create_video("1", SourceType.UPLOAD, str(outside))
        self.service.delete_video(video.id)
        self.assertTrue(outside.exists())

    def test_recover(self):
        in_flight = self.db.create_video("1", SourceType.YOUTUBE, "u1", status=VideoStatus.DOWNLOADING)
        transcribing = self.db.create_video("1", SourceType.YOUTUBE, "u2", status=VideoStatus.TRANSCRIBING)
        queued = self.db.create_video("1", SourceType.YOUTUBE, "https://youtu.be/dQw4w9WgXcQ")
        lost_upload = self.db.create_video("1", SourceType.UPLOAD, str(self.root / "gone.mp3"))
        done = self.db.create_video("1", SourceType.YOUTUBE, "u3", status=VideoStatus.TRANSCRIBED)

        self.assertEqual(self.service.recover(), [queued.id])
        self.scheduler.submit_acquisition.assert_called_once_with(queued.id)
        for video in (in_flight, transcribing, lost_upload):
            self.assertEqual(self.db.get_video(video.id).status, VideoStatus.FAILED)
        self.assertEqual(self.db.get_video(done.id).status, VideoStatus.TRANSCRIBED)

    def test_create_without_submit_waits_for_recover(self):
        video = self.service.create_video("7", SourceType.YOUTUBE,
                                          "https://youtu.be/dQw4w9WgXcQ", submit=False)
        self.assertEqual(self.db.get_video(video.id).status, VideoStatus.QUEUED)
        self.scheduler.submit_acquisition.assert_not_called()

        self.assertEqual(self.service.recover(), [video.id])
        self.scheduler.submit_acquisition.assert_called_once_with(video.id)


# ── Instance lock ─────────────────────────────────────────────────────

class TestInstanceLock(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = lock_path_for(Path(self.tmpdir.name) / "data" / "app.db")
        self.locks = []

    def tearDown(self):
        for lock in self.locks:
            lock.release()
        self.tmpdir.cleanup()

    def _lock(self):
        lock = InstanceLock(self.path)
        self.locks.append(lock)
        return lock

    def test_lock_path_sits_beside_db(self):
        self.assertEqual(self.path.name, "app.db.lock")
        self.assertEqual(self.path.parent.name, "data")

    def test_exclusive_when_alone(self):
        lock = self._lock()
        lock.acquire_shared()
        self.assertTrue(lock.held)
        self.assertTrue(lock.try_exclusive())
        lock.downgrade()

        other = self._lock()
        other.acquire_shared()
        self.assertTrue(other.held)

    def test_exclusive_refused_while_other_holds_shared(self):
        first = self._lock()
        first.acquire_shared()
        second = self._lock()
        self.assertFalse(second.try_exclusive())
        self.assertTrue(second.held)

        # the refused upgrade still leaves `second` holding shared
        first.release()
        third = self._lock()
        self.assertFalse(third.try_exclusive())

        second.release()
        self.assertFalse(second.held)
        self.assertTrue(third.try_exclusive())


class TestConcurrentProcesses(TempDirTestCase):
    """Two pipelines on one database: the second must not recover live rows."""

    URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

    def setUp(self):
        super().setUp()
        self.config = AppConfig(self.root / "config.json")
        self.config.set('scratch_dir', str(self.scratch_dir))
        self.config.set('audio_dir', str(self.audio_dir))
        self.config.set('db_path', str(self.root / "test.db"))
        self.config.set('auto_transcribe', False)

    def _service(self, db):
        return PipelineService.from_config(
            self.config, db=db, client=FakeAssemblyAI().client(),
            summary_provider=FakeSummaryProvider(),
        )

    def _stop(self, service):
        service.scheduler.shutdown(timeout=2)
        service.summarizer.shutdown()
        service.instance_lock.release()

    def test_second_process_skips_recovery(self):
        started = threading.Event()
        release = threading.Event()

        def blocking_download(url, scratch_dir, audio_dir):
            started.set()
            release.wait(5)
            path = audio_dir / "downloaded.mp3"
            path.write_bytes(b"ID3")
            return path

        first = self._service(self.db)
        patches = [
            mock.patch("studyscribe.core.acquisition.download_youtube_audio",
                       side_effect=blocking_download),
            mock.patch("studyscribe.core.acquisition.fetch_metadata",
                       return_value={'id': 'dQw4w9WgXcQ', 'duration': 600}),
        ]
        for p in patches:
            p.start()
        try:
            video = first.create_video("1", SourceType.YOUTUBE, self.URL)
            self.assertTrue(started.wait(5))
            self.assertEqual(self.db.get_video(video.id).status, VideoStatus.DOWNLOADING)

            second = self._service(Database(self.root / "test.db"))
            try:
                self.assertEqual(second.recover(), [])
                self.assertEqual(self.db.get_video(video.id).status, VideoStatus.DOWNLOADING)
            finally:
                second.shutdown()

            release.set()
            self.assertTrue(first.wait_idle(timeout=5))
        finally:
            release.set()
            for p in patches:
                p.stop()
            self._stop(first)

        self.assertEqual(self.db.get_video(video.id).status, VideoStatus.AUDIO_READY)

    def test_recovery_runs_when_alone(self):
        stale = self.db.create_video("1", SourceType.YOUTUBE, self.URL,
                                     status=VideoStatus.DOWNLOADING)
        service = self._service(self.db)
        try:
            self.assertEqual(service.recover(), [])
        finally:
            self._stop(service)
        self.assertEqual(self.db.get_video(stale.id).status, VideoStatus.FAILED)


# ── Command line ──────────────────────────────────────────────────────

class TestCommandLine(TempDirTestCase):

    URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

    def setUp(self):
        super().setUp()
        self.config_path = self.root / "config.json"
        self.config_path.write_text(json.dumps({
            'scratch_dir': str(self.scratch_dir),
            'audio_dir': str(self.audio_dir),
            'db_path': str(self.root / "test.db"),
            'log_dir': str(self.root / "logs"),
        }))

    def test_submit_no_wait_only_records_video(self):
        import main as cli

        out = io.StringIO()
        with mock.patch.object(cli, "setup_logging", return_value=self.root / "app.log"), \
                mock.patch.object(cli, "check_prerequisites") as prereqs, \
                mock.patch.object(SerialJobQueue, "enqueue") as enqueue, \
                mock.patch("sys.stdout", out):
            rc = cli.main(["--config", str(self.config_path),
                           "submit", "youtube", self.URL, "--no-wait"])

        self.assertEqual(rc, 0)
        enqueue.assert_not_called()
        prereqs.assert_not_called()
        queued = self.db.get_videos_by_status(VideoStatus.QUEUED)
        self.assertEqual(len(queued), 1)
        self.assertIn(f"Video {queued[0].id} queued", out.getvalue())
        self.assertIn("recover", out.getvalue())


# ── End to end ────────────────────────────────────────────────────────

class TestEndToEnd(TempDirTestCase):
    """Submit a YouTube source resolving to 1200s of audio and run it through."""

    URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

    def setUp(self):
        super().setUp()
        self.config = AppConfig(self.root / "config.json")
        self.config.set('scratch_dir', str(self.scratch_dir))
        self.config.set('audio_dir', str(self.audio_dir))
        self.config.set('db_path', str(self.root / "test.db"))
        self.summary_done = threading.Event()

    def _fake_download(self, url, scratch_dir, audio_dir):
        audio_dir.mkdir(parents=True, exist_ok=True)
        path = audio_dir / "downloaded.mp3"
        path.write_bytes(b"ID3")
        return path

    def _run(self, fake_api, provider):
        service = PipelineService.from_config(
            self.config, db=self.db, client=fake_api.client(), summary_provider=provider,
        )
        self.addCleanup(service.instance_lock.release)
        service.summarizer.on_complete = lambda tid, summary: self.summary_done.set()
        patches = [
            mock.patch("studyscribe.core.acquisition.download_youtube_audio",
                       side_effect=self._fake_download),
            mock.patch("studyscribe.core.acquisition.fetch_metadata",
                       return_value={'id': 'dQw4w9WgXcQ', 'duration': 1200}),
            mock.patch("studyscribe.core.media.run_subprocess_capture",
                       side_effect=fake_media(1200)),
        ]
        for p in patches:
            p.start()
        try:
            video = service.create_video("42", SourceType.YOUTUBE, self.URL)
            self.assertTrue(service.wait_idle(timeout=10))
        finally:
            for p in patches:
                p.stop()
            service.scheduler.shutdown(timeout=2)
        return service, video

    def test_youtube_source_is_transcribed(self):
        fake_api = FakeAssemblyAI(statuses=['queued', 'processing', 'completed'])
        provider = FakeSummaryProvider()
        service, video = self._run(fake_api, provider)

        stored = service.get_video(video.id)
        self.assertEqual(stored.status, VideoStatus.TRANSCRIBED)
        self.assertEqual(stored.duration, 1200)

        transcriptions = service.get_transcriptions(video.id)
        self.assertEqual(len(transcriptions), 1)
        t = transcriptions[0]
        self.assertIn("[Segment 1 | start=0s]", t.content)
        self.assertIn("[Segment 2 | start=900s]", t.content)
        self.assertLess(t.content.index("part number 1"), t.content.index("part number 2"))
        self.assertEqual(len(t.content_json['chunks']), 2)
        self.assertEqual(t.language, "en")
        self.assertEqual(t.confidence, 0.9)
        self.assertEqual(fake_api.uploads, 2)
        self.assertEqual(self.scratch_files(), [])

        self.assertTrue(self.summary_done.wait(5))
        self.assertEqual(self.db.get_transcription(t.id).summary, provider.text)
        service.summarizer.shutdown()

    def test_provider_failure_fails_video(self):
        fake_api = FakeAssemblyAI(statuses=['processing', 'failed'], error="Unsupported audio")
        provider = FakeSummaryProvider()
        service, video = self._run(fake_api, provider)

        self.assertEqual(service.get_video(video.id).status, VideoStatus.FAILED)
        self.assertEqual(service.get_transcriptions(video.id), [])
        self.assertEqual(self.scratch_files(), [])
        self.assertEqual(provider.calls, [])
        self.assertEqual(fake_api.uploads, 1)
        service.summarizer.shutdown()

    def test_later_segment_failure_discards_earlier_results(self):
        fake_api = FakeAssemblyAI(statuses=['processing', 'completed'],
                                  error="Transcoding failed", fail_jobs={'job-2'})
        provider = FakeSummaryProvider()
        service, video = self._run(fake_api, provider)

        self.assertEqual(fake_api.uploads, 2)
        self.assertEqual(fake_api._polls['job-1'], 2)
        self.assertEqual(service.get_video(video.id).status, VideoStatus.FAILED)
        self.assertEqual(service.get_transcriptions(video.id), [])
        self.assertEqual(self.scratch_files(), [])
        self.assertEqual(provider.calls, [])
        service.summarizer.shutdown()


if __name__ == "__main__":
    unittest.main()
