"""
SQLite data models (plain dataclasses) for studyscribe.
"""

from dataclasses import dataclass
from typing import Optional

from studyscribe.core.constants import VideoStatus


@dataclass
class Video:
    id: str                          # UUID
    owner_id: str
    source_type: str
    source_value: str
    status: str = VideoStatus.QUEUED
    stage: Optional[str] = None
    duration: float = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class Transcription:
    id: int
    video_id: str
    language: str
    content: str
    content_json: dict
    summary: Optional[str] = None
    confidence: Optional[float] = None
    created_at: Optional[str] = None


@dataclass
class UploadedFile:
    """A file handed over by the request layer for an `upload` video."""
    path: str
    original_name: str
