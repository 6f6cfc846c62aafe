"""
Chunk storage: recorded video segments on disk plus their metadata rows.

Layout under the data root:
    recordings/YYYY-MM-DD/chunk_HHMMSS.mp4
    timelapses/YYYY-MM-DD/timelapse.mp4
"""

import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path

from dayflow.core.constants import (
    APP_SUPPORT_DIR, DB_FILENAME, RECORDINGS_DIRNAME, TIMELAPSES_DIRNAME,
    CHUNK_EXTENSION, CHUNK_DURATION_SEC, TIMELAPSE_FILENAME, ErrorCode,
)
from dayflow.core.db_sqlite import Database
from dayflow.core.error_codes import StorageError
from dayflow.core.models_sqlite import VideoChunk

logger = logging.getLogger(__name__)

CHUNK_DURATION = timedelta(seconds=CHUNK_DURATION_SEC)


class ChunkStore:
    """Owns chunk files and their rows in the video_chunks table."""

    def __init__(self, root_dir: Path | None = None, db: Database | None = None):
        self.root_dir = Path(root_dir) if root_dir else APP_SUPPORT_DIR
        self.recordings_dir = self.root_dir / RECORDINGS_DIRNAME
        self.timelapses_dir = self.root_dir / TIMELAPSES_DIRNAME
        self.db = db
        self._initialized = False

    def initialize(self) -> "ChunkStore":
        """Create the directory layout and open the database."""
        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        self.timelapses_dir.mkdir(parents=True, exist_ok=True)
        if self.db is None:
            self.db = Database(self.root_dir / DB_FILENAME)
        self._initialized = True
        logger.info("Chunk store ready at %s", self.root_dir)
        return self

    def _require_db(self) -> Database:
        if not self._initialized or self.db is None:
            raise StorageError("Storage not initialized",
                               code=ErrorCode.STORE_NOT_INITIALIZED)
        return self.db

    def now(self) -> datetime:
        return self._require_db().now()

    # ── Paths ─────────────────────────────────────────────────────────

    def allocate_chunk_path(self, timestamp: datetime) -> Path:
        folder = self.recordings_dir / timestamp.strftime("%Y-%m-%d")
        folder.mkdir(parents=True, exist_ok=True)
        return folder / f"chunk_{timestamp:%H%M%S}.{CHUNK_EXTENSION}"

    def timelapse_output_path(self, date: datetime) -> Path:
        folder = self.timelapses_dir / date.strftime("%Y-%m-%d")
        folder.mkdir(parents=True, exist_ok=True)
        return folder / TIMELAPSE_FILENAME

    # ── Metadata ──────────────────────────────────────────────────────

    def record_chunk(self, path: Path, start_time: datetime, frame_count: int) -> VideoChunk:
        """Register a finished chunk file. The file must already be on disk."""
        db = self._require_db()
        path = Path(path)
        try:
            file_size = path.stat().st_size
        except OSError as e:
            raise StorageError(f"Cannot read chunk file {path}: {e}")

        chunk = VideoChunk(
            id=db.new_id(),
            file_path=str(path),
            start_time=start_time,
            end_time=start_time + CHUNK_DURATION,
            frame_count=frame_count,
            file_size=file_size,
            created_at=db.now(),
        )
        db.insert_chunk(chunk)
        logger.debug("Recorded chunk %s (%d bytes)", path.name, file_size)
        return chunk

    def query_chunks(self, start: datetime, end: datetime) -> list[VideoChunk]:
        """Chunks whose start time falls in [start, end], oldest first."""
        return self._require_db().get_chunks_in_range(start, end)

    def unqueued_chunks(self, start: datetime, end: datetime) -> list[VideoChunk]:
        """Chunks starting in [start, end] not yet covered by any analysis job."""
        return self._require_db().get_unqueued_chunks(start, end)

    def has_contiguous_coverage(self, start: datetime, end: datetime) -> bool:
        """True when recorded chunks cover [start, end) without a gap."""
        if end <= start:
            return False
        chunks = self.query_chunks(start - CHUNK_DURATION, end)
        covered_until = start
        for chunk in chunks:
            if chunk.start_time > covered_until:
                return False
            covered_until = max(covered_until, chunk.end_time)
            if covered_until >= end:
                return True
        return False

    # ── Retention ─────────────────────────────────────────────────────

    def evict_older_than(self, cutoff: datetime,
                         stop_event: threading.Event | None = None) -> int:
        """
        Delete every chunk created before the cutoff: file first (best
        effort), then the row. Empty date folders are pruned afterwards.
        Returns the number of chunks evicted.
        """
        db = self._require_db()
        old_chunks = db.get_chunks_created_before(cutoff)

        evicted = []
        for chunk in old_chunks:
            if stop_event is not None and stop_event.is_set():
                logger.info("Eviction stopped after %d of %d chunks",
                            len(evicted), len(old_chunks))
                break
            self._delete_chunk_file(Path(chunk.file_path))
            evicted.append(chunk.id)

        db.delete_chunks(evicted)
        self._cleanup_empty_folders(self.recordings_dir)

        if evicted:
            logger.info("Evicted %d chunks created before %s", len(evicted), cutoff)
        return len(evicted)

    @staticmethod
    def _delete_chunk_file(path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete chunk file %s: %s", path, e)

    def _cleanup_empty_folders(self, path: Path):
        """Remove empty directories below path, deepest first."""
        if not path.is_dir():
            return
        for child in path.iterdir():
            if not child.is_dir():
                continue
            self._cleanup_empty_folders(child)
            try:
                if not any(child.iterdir()):
                    child.rmdir()
                    logger.debug("Removed empty folder: %s", child)
            except OSError as e:
                logger.warning("Failed to remove folder %s: %s", child, e)
