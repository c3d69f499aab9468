"""
SQLite database layer for studyscribe.
Thread-safe via check_same_thread=False + explicit locking.
"""

import json
import sqlite3
import threading
import uuid
import logging
from datetime import datetime, timezone
from pathlib import Path

from studyscribe.core.constants import DB_PATH, VideoStatus
from studyscribe.core.models_sqlite import Video, Transcription

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS videos (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    source_type TEXT NOT NULL,
    source_value TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    stage TEXT,
    duration REAL NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_videos_status ON videos(status, created_at);

CREATE TABLE IF NOT EXISTS transcriptions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    video_id TEXT NOT NULL,
    language TEXT NOT NULL,
    content TEXT NOT NULL,
    content_json TEXT,
    summary TEXT,
    confidence REAL,
    created_at TEXT,
    FOREIGN KEY (video_id) REFERENCES videos(id)
);

CREATE INDEX IF NOT EXISTS idx_transcriptions_video_id ON transcriptions(video_id);
"""


class Database:
    """SQLite database wrapper for studyscribe."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._ensure_dirs()
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(_CREATE_TABLES)
            cur.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )
            self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_video(row: sqlite3.Row) -> Video:
        return Video(**dict(row))

    @staticmethod
    def _row_to_transcription(row: sqlite3.Row) -> Transcription:
        data = dict(row)
        data['content_json'] = json.loads(data['content_json']) if data['content_json'] else {}
        return Transcription(**data)

    # ── Video CRUD ────────────────────────────────────────────────────

    def create_video(self, owner_id: str, source_type: str, source_value: str,
                     status: str = VideoStatus.QUEUED) -> Video:
        now = self._now()
        video = Video(
            id=str(uuid.uuid4()),
            owner_id=str(owner_id),
            source_type=source_type,
            source_value=source_value,
            status=status,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self.conn.execute(
                """INSERT INTO videos
                   (id, owner_id, source_type, source_value, status, stage,
                    duration, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (video.id, video.owner_id, video.source_type, video.source_value,
                 video.status, video.stage, video.duration,
                 video.created_at, video.updated_at),
            )
            self.conn.commit()
        return video

    def get_video(self, video_id: str) -> Video | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM videos WHERE id = ?", (video_id,)
            ).fetchone()
        return self._row_to_video(row) if row else None

    def get_videos_by_status(self, *statuses: str) -> list[Video]:
        marks = ', '.join('?' for _ in statuses)
        with self._lock:
            rows = self.conn.execute(
                f"SELECT * FROM videos WHERE status IN ({marks}) ORDER BY created_at ASC",
                statuses,
            ).fetchall()
        return [self._row_to_video(r) for r in rows]

    def update_video(self, video_id: str, **kwargs):
        kwargs['updated_at'] = self._now()
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [video_id]
        with self._lock:
            self.conn.execute(
                f"UPDATE videos SET {sets} WHERE id = ?", vals
            )
            self.conn.commit()

    def delete_video(self, video_id: str):
        with self._lock:
            self.conn.execute("DELETE FROM transcriptions WHERE video_id = ?", (video_id,))
            self.conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))
            self.conn.commit()

    # ── Transcription CRUD ────────────────────────────────────────────

    def create_transcription(self, video_id: str, language: str, content: str,
                             content_json: dict, confidence: float | None,
                             summary: str | None = None) -> Transcription:
        now = self._now()
        with self._lock:
            cur = self.conn.execute(
                """INSERT INTO transcriptions
                   (video_id, language, content, content_json, summary,
                    confidence, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (video_id, language, content, json.dumps(content_json),
                 summary, confidence, now),
            )
            self.conn.commit()
            transcription_id = cur.lastrowid
        return Transcription(
            id=transcription_id,
            video_id=video_id,
            language=language,
            content=content,
            content_json=content_json,
            summary=summary,
            confidence=confidence,
            created_at=now,
        )

    def get_transcription(self, transcription_id: int) -> Transcription | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM transcriptions WHERE id = ?", (transcription_id,)
            ).fetchone()
        return self._row_to_transcription(row) if row else None

    def get_transcriptions_for_video(self, video_id: str) -> list[Transcription]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM transcriptions WHERE video_id = ? ORDER BY id",
                (video_id,),
            ).fetchall()
        return [self._row_to_transcription(r) for r in rows]

    def set_summary(self, transcription_id: int, summary: str):
        with self._lock:
            self.conn.execute(
                "UPDATE transcriptions SET summary = ? WHERE id = ?",
                (summary, transcription_id),
            )
            self.conn.commit()
