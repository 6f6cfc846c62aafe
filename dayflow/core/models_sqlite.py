"""
SQLite data models (plain dataclasses) for Dayflow.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dayflow.core.constants import JobStatus


@dataclass
class VideoChunk:
    id: str                          # UUID
    file_path: str
    start_time: datetime
    end_time: datetime
    frame_count: int
    file_size: int
    created_at: datetime


@dataclass
class AnalysisJob:
    id: str                          # UUID
    start_time: datetime
    end_time: datetime
    status: str = JobStatus.PENDING
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    card_id: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class TimelineCard:
    id: str                          # UUID
    date: datetime                   # midnight of the card's calendar day
    start_time: datetime
    end_time: datetime
    title: str
    summary: str
    category: str
    is_distraction: bool = False
    thumbnail_path: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class AnalysisResult:
    """Common output of every analysis provider. Never persisted."""
    title: str
    summary: str
    category: str
    is_distraction: bool
    start_time: datetime
    end_time: datetime
