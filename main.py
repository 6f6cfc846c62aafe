#!/usr/bin/env python3
"""
Dayflow v1.0.0 — headless entry point.
Runs the analysis worker and the retention sweeper until interrupted.
"""

import sys
import os
import shutil
import signal
import logging
import threading
import traceback
from pathlib import Path
from datetime import datetime, timedelta

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dayflow.core.constants import APP_NAME, APP_VERSION, APP_SUPPORT_DIR, LOG_DIR, ProviderName
from dayflow.core.config import AppConfig
from dayflow.core.chunk_store import ChunkStore
from dayflow.core.analysis_provider import build_provider
from dayflow.core.diagnostics import get_diagnostics
from dayflow.core.job_queue import JobScheduler
from dayflow.core.retention import RetentionSweeper
from dayflow.core.security_utils import KeychainCredentialStore
from dayflow.core.timeline_cards import TimelineCardBuilder

# ── Logging setup (writes to ~/Library/Logs/Dayflow/) ─────────────────
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_FILE = LOG_DIR / "app.log"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.FileHandler(LOG_FILE, encoding="utf-8"),
        logging.StreamHandler(sys.stderr),
    ],
)
logger = logging.getLogger("dayflow")

# How far back the enqueue pass looks for recorded but unanalysed chunks
ENQUEUE_LOOKBACK = timedelta(hours=6)
ENQUEUE_INTERVAL_SEC = 15


def check_prerequisites(config: AppConfig):
    """The local pipeline samples frames with ffmpeg; fail early without it."""
    if config.provider == ProviderName.LOCAL and not shutil.which("ffmpeg"):
        logger.error("Missing ffmpeg. PATH = %s", os.environ.get("PATH", ""))
        sys.exit(1)


def main():
    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("Data root: %s", APP_SUPPORT_DIR)
    logger.info("=" * 60)

    try:
        config = AppConfig()
        check_prerequisites(config)

        credentials = KeychainCredentialStore()
        store = ChunkStore(APP_SUPPORT_DIR).initialize()
        provider = build_provider(config.as_dict(), credentials)
        scheduler = JobScheduler(store.db, store, provider, TimelineCardBuilder(store.db))
        sweeper = RetentionSweeper(store, timedelta(days=config.retention_days))

        logger.info("Diagnostics: %s", get_diagnostics(config.as_dict(), credentials, store))

        recovered = scheduler.recover_interrupted()
        if recovered:
            logger.warning("Marked %d interrupted jobs as failed", recovered)

        stop = threading.Event()
        signal.signal(signal.SIGTERM, lambda *_: stop.set())

        sweeper.start(timedelta(minutes=config.sweep_interval_minutes))
        scheduler.start_processing(keep_alive=True)

        try:
            while not stop.is_set():
                now = store.now()
                queued = scheduler.enqueue_recorded(now - ENQUEUE_LOOKBACK, now)
                if queued:
                    logger.info("Queued %d new analysis jobs", len(queued))
                stop.wait(ENQUEUE_INTERVAL_SEC)
        except KeyboardInterrupt:
            pass

        logger.info("Shutting down")
        worker_stopped = scheduler.stop_processing(timeout=30)
        sweeper.stop(timeout=30)
        if worker_stopped and not sweeper.is_running():
            store.db.close()
        else:
            # the busy thread still holds the connection; process exit closes it
            logger.warning("Background work still running at exit; leaving database open")
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        logger.critical("Fatal error: %s\n%s", error_msg, traceback.format_exc())
        sys.exit(1)


if __name__ == "__main__":
    main()
