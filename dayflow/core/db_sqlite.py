"""
SQLite database layer for Dayflow.
Thread-safe via check_same_thread=False + explicit locking.

Timestamps are stored as naive local-time ISO strings with a fixed
microsecond precision, so string comparison in SQL is chronological.
"""

import sqlite3
import threading
import uuid
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

from dayflow.core.constants import DB_PATH, JobStatus, TERMINAL_STATUSES
from dayflow.core.models_sqlite import VideoChunk, AnalysisJob, TimelineCard

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS video_chunks (
    id TEXT PRIMARY KEY,
    file_path TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    frame_count INTEGER DEFAULT 0,
    file_size INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_video_chunks_start_time ON video_chunks(start_time);
CREATE INDEX IF NOT EXISTS idx_video_chunks_created_at ON video_chunks(created_at);

CREATE TABLE IF NOT EXISTS analysis_jobs (
    id TEXT PRIMARY KEY,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    error_code TEXT,
    error_message TEXT,
    card_id TEXT,
    created_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_analysis_jobs_status ON analysis_jobs(status);
CREATE INDEX IF NOT EXISTS idx_analysis_jobs_created_at ON analysis_jobs(created_at);
CREATE INDEX IF NOT EXISTS idx_analysis_jobs_start_time ON analysis_jobs(start_time);

CREATE TABLE IF NOT EXISTS timeline_cards (
    id TEXT PRIMARY KEY,
    date TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    title TEXT NOT NULL,
    summary TEXT NOT NULL,
    category TEXT NOT NULL,
    is_distraction INTEGER DEFAULT 0,
    thumbnail_path TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_timeline_cards_date ON timeline_cards(date);
CREATE INDEX IF NOT EXISTS idx_timeline_cards_start_time ON timeline_cards(start_time);
"""


def to_db_time(value: datetime | None) -> str | None:
    """Serialise a datetime as naive local time."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Database:
    """SQLite database wrapper for Dayflow."""

    def __init__(self, db_path: Path | None = None,
                 clock: Callable[[], datetime] | None = None):
        self.db_path = db_path or DB_PATH
        self.clock = clock or datetime.now
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._ensure_dirs()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        cur = self.conn.cursor()
        cur.executescript(_CREATE_TABLES)
        # Set schema version
        cur.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (_SCHEMA_VERSION,),
        )
        self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Hold the lock and commit once on the way out.
        Nested calls join the outer transaction.
        """
        with self._lock:
            self._tx_depth += 1
            try:
                yield self.conn
            except BaseException:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    self.conn.rollback()
                raise
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self.conn.commit()

    # ── Helpers ───────────────────────────────────────────────────────

    def now(self) -> datetime:
        return self.clock()

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> VideoChunk:
        data = dict(row)
        for key in ('start_time', 'end_time', 'created_at'):
            data[key] = from_db_time(data[key])
        return VideoChunk(**data)

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> AnalysisJob:
        data = dict(row)
        for key in ('start_time', 'end_time', 'created_at', 'completed_at'):
            data[key] = from_db_time(data[key])
        return AnalysisJob(**data)

    @staticmethod
    def _row_to_card(row: sqlite3.Row) -> TimelineCard:
        data = dict(row)
        for key in ('date', 'start_time', 'end_time', 'created_at'):
            data[key] = from_db_time(data[key])
        data['is_distraction'] = bool(data['is_distraction'])
        return TimelineCard(**data)

    # ── Chunk CRUD ────────────────────────────────────────────────────

    def insert_chunk(self, chunk: VideoChunk):
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO video_chunks
                   (id, file_path, start_time, end_time, frame_count,
                    file_size, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (chunk.id, chunk.file_path, to_db_time(chunk.start_time),
                 to_db_time(chunk.end_time), chunk.frame_count,
                 chunk.file_size, to_db_time(chunk.created_at)),
            )

    def get_chunks_in_range(self, start: datetime, end: datetime) -> list[VideoChunk]:
        with self._lock:
            rows = self.conn.execute(
                """SELECT * FROM video_chunks
                   WHERE start_time >= ? AND start_time <= ?
                   ORDER BY start_time ASC""",
                (to_db_time(start), to_db_time(end)),
            ).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def get_unqueued_chunks(self, start: datetime, end: datetime) -> list[VideoChunk]:
        """Chunks starting in [start, end] that no analysis job overlaps."""
        with self._lock:
            rows = self.conn.execute(
                """SELECT c.* FROM video_chunks c
                   WHERE c.start_time >= ? AND c.start_time <= ?
                     AND NOT EXISTS (
                         SELECT 1 FROM analysis_jobs j
                         WHERE j.start_time < c.end_time AND j.end_time > c.start_time
                     )
                   ORDER BY c.start_time ASC""",
                (to_db_time(start), to_db_time(end)),
            ).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def get_chunks_created_before(self, cutoff: datetime) -> list[VideoChunk]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM video_chunks WHERE created_at < ? ORDER BY created_at ASC",
                (to_db_time(cutoff),),
            ).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def delete_chunks(self, chunk_ids: list[str]):
        if not chunk_ids:
            return
        with self.transaction() as conn:
            conn.executemany(
                "DELETE FROM video_chunks WHERE id = ?",
                [(chunk_id,) for chunk_id in chunk_ids],
            )

    def count_chunks(self) -> int:
        with self._lock:
            row = self.conn.execute("SELECT COUNT(*) FROM video_chunks").fetchone()
        return row[0]

    # ── Job CRUD ──────────────────────────────────────────────────────

    def create_job(self, start_time: datetime, end_time: datetime) -> AnalysisJob:
        job = AnalysisJob(
            id=self.new_id(),
            start_time=start_time,
            end_time=end_time,
            created_at=self.now(),
        )
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO analysis_jobs
                   (id, start_time, end_time, status, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (job.id, to_db_time(job.start_time), to_db_time(job.end_time),
                 job.status, to_db_time(job.created_at)),
            )
        return job

    def get_job(self, job_id: str) -> AnalysisJob | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM analysis_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return self._row_to_job(row) if row else None

    def get_all_jobs(self) -> list[AnalysisJob]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM analysis_jobs ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def get_jobs_by_status(self, status: str) -> list[AnalysisJob]:
        # rowid breaks ties between jobs created within the same microsecond
        with self._lock:
            rows = self.conn.execute(
                """SELECT * FROM analysis_jobs WHERE status = ?
                   ORDER BY created_at ASC, rowid ASC""",
                (status,),
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def find_overlapping_job(self, start: datetime, end: datetime) -> AnalysisJob | None:
        with self._lock:
            row = self.conn.execute(
                """SELECT * FROM analysis_jobs
                   WHERE start_time < ? AND end_time > ?
                   ORDER BY created_at ASC, rowid ASC LIMIT 1""",
                (to_db_time(end), to_db_time(start)),
            ).fetchone()
        return self._row_to_job(row) if row else None

    def update_job(self, job_id: str, **kwargs):
        for key, value in kwargs.items():
            if isinstance(value, datetime):
                kwargs[key] = to_db_time(value)
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [job_id]
        with self.transaction() as conn:
            conn.execute(
                f"UPDATE analysis_jobs SET {sets} WHERE id = ?", vals
            )

    def update_job_status(self, job_id: str, status: str, **extra):
        fields = {'status': status}
        if status in TERMINAL_STATUSES:
            fields['completed_at'] = self.now()
        fields.update(extra)
        self.update_job(job_id, **fields)

    def claim_next_pending_job(self) -> AnalysisJob | None:
        """Atomically move the oldest pending job to processing."""
        with self.transaction() as conn:
            row = conn.execute(
                """SELECT id FROM analysis_jobs WHERE status = ?
                   ORDER BY created_at ASC, rowid ASC LIMIT 1""",
                (JobStatus.PENDING,),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "UPDATE analysis_jobs SET status = ? WHERE id = ? AND status = ?",
                (JobStatus.PROCESSING, row['id'], JobStatus.PENDING),
            )
            return self.get_job(row['id'])

    # ── Card CRUD ─────────────────────────────────────────────────────

    def insert_card(self, card: TimelineCard):
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO timeline_cards
                   (id, date, start_time, end_time, title, summary, category,
                    is_distraction, thumbnail_path, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (card.id, to_db_time(card.date), to_db_time(card.start_time),
                 to_db_time(card.end_time), card.title, card.summary,
                 card.category, int(card.is_distraction), card.thumbnail_path,
                 to_db_time(card.created_at)),
            )

    def update_card(self, card: TimelineCard):
        with self.transaction() as conn:
            conn.execute(
                """UPDATE timeline_cards
                   SET end_time = ?, title = ?, summary = ?, category = ?,
                       is_distraction = ?, thumbnail_path = ?
                   WHERE id = ?""",
                (to_db_time(card.end_time), card.title, card.summary,
                 card.category, int(card.is_distraction), card.thumbnail_path,
                 card.id),
            )

    def get_card(self, card_id: str) -> TimelineCard | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM timeline_cards WHERE id = ?", (card_id,)
            ).fetchone()
        return self._row_to_card(row) if row else None

    def get_cards_for_date(self, date: datetime) -> list[TimelineCard]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM timeline_cards WHERE date = ? ORDER BY start_time ASC",
                (to_db_time(date),),
            ).fetchall()
        return [self._row_to_card(r) for r in rows]

    def get_last_card_before(self, start_time: datetime) -> TimelineCard | None:
        """Most recent card that starts before the given time."""
        with self._lock:
            row = self.conn.execute(
                """SELECT * FROM timeline_cards WHERE start_time < ?
                   ORDER BY start_time DESC LIMIT 1""",
                (to_db_time(start_time),),
            ).fetchone()
        return self._row_to_card(row) if row else None
