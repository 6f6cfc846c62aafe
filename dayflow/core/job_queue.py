"""
Analysis job scheduler and worker.
Processes one job at a time: pending → processing → completed | failed.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from dayflow.core.constants import JobStatus, ErrorCode, MAX_ERROR_MESSAGE_LEN
from dayflow.core.chunk_store import ChunkStore, CHUNK_DURATION
from dayflow.core.db_sqlite import Database
from dayflow.core.error_codes import DayflowError, ProviderError, StorageError
from dayflow.core.models_sqlite import AnalysisJob, AnalysisResult, VideoChunk
from dayflow.core.analysis_provider import AnalysisProvider
from dayflow.core.timeline_cards import TimelineCardBuilder

logger = logging.getLogger(__name__)

IDLE_POLL_SEC = 5.0


class JobScheduler:
    """
    Owns the analysis job lifecycle.
    A single lock keeps at most one job in processing at a time; jobs are
    taken oldest-created first, regardless of the window they cover.
    """

    def __init__(self, db: Database, chunk_store: ChunkStore,
                 provider: AnalysisProvider, card_builder: TimelineCardBuilder):
        self.db = db
        self.chunk_store = chunk_store
        self.provider = provider
        self.card_builder = card_builder
        self._run_lock = threading.Lock()
        self._worker_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._stop_after_current = threading.Event()
        self._running = False
        self._current_job_id: Optional[str] = None

        # Callbacks
        self.on_job_updated: Optional[Callable[[AnalysisJob], None]] = None
        self.on_queue_empty: Optional[Callable[[], None]] = None

    # ── Queue management ──────────────────────────────────────────────

    def enqueue(self, start: datetime, end: datetime) -> AnalysisJob | None:
        """
        Create a pending job for the window once chunks cover it.
        Returns the existing job when one already overlaps the window,
        or None while coverage is incomplete.
        """
        with self.db.transaction():
            existing = self.db.find_overlapping_job(start, end)
            if existing is not None:
                return existing
            if not self.chunk_store.has_contiguous_coverage(start, end):
                logger.debug("Window %s–%s not fully recorded yet", start, end)
                return None
            job = self.db.create_job(start, end)

        logger.info("Queued analysis job %s for %s–%s", job.id, start, end)
        self._notify_job_updated(job.id)
        return job

    def enqueue_recorded(self, start: datetime, end: datetime) -> list[AnalysisJob]:
        """Queue one single-chunk window for every recorded chunk in range."""
        created = []
        for chunk in self.chunk_store.unqueued_chunks(start, end):
            job = self.enqueue(chunk.start_time, chunk.end_time)
            if job is not None:
                created.append(job)
        return created

    def retry_job(self, job_id: str) -> bool:
        """Reset a failed job to pending. Never called by the scheduler itself."""
        with self.db.transaction():
            job = self.db.get_job(job_id)
            if job is None or job.status != JobStatus.FAILED:
                return False
            self.db.update_job(job_id,
                               status=JobStatus.PENDING,
                               error_code=None,
                               error_message=None,
                               completed_at=None)
        self._notify_job_updated(job_id)
        return True

    def recover_interrupted(self) -> int:
        """Fail jobs left in processing by a previous run that died mid-job."""
        recovered = 0
        for job in self.db.get_jobs_by_status(JobStatus.PROCESSING):
            if job.id == self._current_job_id:
                continue
            self._fail_job(job.id, ErrorCode.INTERRUPTED,
                           "Analysis interrupted before completion")
            recovered += 1
        return recovered

    # ── Worker control ────────────────────────────────────────────────

    def start_processing(self, keep_alive: bool = False):
        """Start the worker thread. With keep_alive it idles instead of exiting."""
        if self._running:
            return
        self._stop_event.clear()
        self._stop_after_current.clear()
        self._running = True
        self._worker_thread = threading.Thread(
            target=self._worker_loop, args=(keep_alive,), daemon=True,
        )
        self._worker_thread.start()

    def stop_processing(self, timeout: float | None = None) -> bool:
        """
        Stop processing; an in-flight job stops at its next unit boundary.
        Returns True once the worker thread has exited.
        """
        self._stop_event.set()
        if self._worker_thread is not None and timeout is not None:
            self._worker_thread.join(timeout)
        if self._worker_thread is not None and self._worker_thread.is_alive():
            return False
        self._running = False
        return True

    def stop_after_current(self):
        """Stop after the current job finishes."""
        self._stop_after_current.set()

    def is_running(self) -> bool:
        return self._running

    @property
    def current_job_id(self) -> Optional[str]:
        return self._current_job_id

    # ── Worker loop ───────────────────────────────────────────────────

    def _worker_loop(self, keep_alive: bool):
        """Main worker loop — processes one job at a time."""
        try:
            while not self._stop_event.is_set():
                if self._stop_after_current.is_set():
                    break

                job = self.run_next()
                if job is not None:
                    continue

                if self.on_queue_empty:
                    self.on_queue_empty()
                if not keep_alive:
                    break
                self._stop_event.wait(IDLE_POLL_SEC)

        except Exception as e:
            logger.error("Worker loop error: %s", e, exc_info=True)
        finally:
            self._running = False
            self._current_job_id = None

    def _notify_job_updated(self, job_id: str):
        if self.on_job_updated:
            job = self.db.get_job(job_id)
            if job:
                self.on_job_updated(job)

    # ── Job processing ────────────────────────────────────────────────

    def run_next(self) -> AnalysisJob | None:
        """
        Claim the oldest pending job and drive it to a terminal state.
        Returns the finished job, or None when nothing is pending or
        processing has been stopped.
        """
        with self._run_lock:
            # a stop request cancels the job in flight, it never claims new ones
            if self._stop_event.is_set():
                return None
            job = self.db.claim_next_pending_job()
            if job is None:
                return None

            self._current_job_id = job.id
            logger.info("Processing job %s (%s–%s)", job.id, job.start_time, job.end_time)
            self._notify_job_updated(job.id)
            try:
                return self._process_job(job)
            finally:
                self._current_job_id = None

    def _process_job(self, job: AnalysisJob) -> AnalysisJob:
        try:
            result = self._analyze_window(job)
        except DayflowError as e:
            logger.warning("Job %s failed: %s", job.id, e)
            return self._fail_job(job.id, e.code, e.message)
        except Exception as e:
            logger.error("Unexpected error processing job %s: %s", job.id, e, exc_info=True)
            return self._fail_job(job.id, ErrorCode.UNEXPECTED, f"{type(e).__name__}: {e}")

        try:
            with self.db.transaction():
                self.db.update_job_status(job.id, JobStatus.COMPLETED,
                                          error_code=None, error_message=None)
                card = self.card_builder.build(self.db.get_job(job.id), result)
                self.db.update_job(job.id, card_id=card.id)
        except Exception as e:
            logger.error("Failed to store result of job %s: %s", job.id, e, exc_info=True)
            return self._fail_job(job.id, ErrorCode.STORAGE_IO,
                                  f"Failed to store timeline card: {e}")

        logger.info("Completed job %s → card %s", job.id, card.id)
        self._notify_job_updated(job.id)
        return self.db.get_job(job.id)

    def _analyze_window(self, job: AnalysisJob) -> AnalysisResult:
        chunks = self._chunks_for_window(job)
        if not chunks:
            raise StorageError(f"No recorded chunks left for {job.start_time}–{job.end_time}",
                               code=ErrorCode.CHUNKS_MISSING)

        results = []
        for chunk in chunks:
            if self._stop_event.is_set():
                raise ProviderError("Processing stopped by user", code=ErrorCode.CANCELLED)
            path = Path(chunk.file_path)
            if not path.exists():
                raise StorageError(f"Chunk file missing: {path}",
                                   code=ErrorCode.CHUNKS_MISSING)
            results.append(self.provider.analyze_video(
                path, chunk.start_time, chunk.end_time, stop_event=self._stop_event,
            ))

        return combine_results(results, job.start_time, job.end_time)

    def _chunks_for_window(self, job: AnalysisJob) -> list[VideoChunk]:
        candidates = self.chunk_store.query_chunks(job.start_time - CHUNK_DURATION,
                                                   job.end_time)
        return [c for c in candidates
                if c.start_time < job.end_time and c.end_time > job.start_time]

    def _fail_job(self, job_id: str, code: str, message: str) -> AnalysisJob:
        message = (message or "Analysis failed")[:MAX_ERROR_MESSAGE_LEN]
        self.db.update_job_status(job_id, JobStatus.FAILED,
                                  error_code=code,
                                  error_message=message)
        self._notify_job_updated(job_id)
        return self.db.get_job(job_id)


def combine_results(results: list[AnalysisResult], start: datetime,
                    end: datetime) -> AnalysisResult:
    """
    Fold per-chunk results into one result for the whole window.
    The first chunk names and classifies the window; summaries are joined.
    """
    first = results[0]
    if len(results) == 1:
        summary = first.summary
    else:
        summary = ' '.join(r.summary.strip() for r in results if r.summary.strip())
    return AnalysisResult(
        title=first.title,
        summary=summary,
        category=first.category,
        is_distraction=first.is_distraction,
        start_time=start,
        end_time=end,
    )
