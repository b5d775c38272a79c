"""Wiring shared by the service entry points"""
import asyncio
import logging
import signal
from typing import Callable, Dict

from email_pipeline.config import (
    QUEUE_BACKEND,
    DATABASE_URL,
    SCRAPE_QUEUE_NAME,
    RESULTS_QUEUE_NAME,
    DEAD_LETTER_QUEUE_NAME,
    SCRAPE_QUEUE_ATTEMPTS,
    SCRAPE_QUEUE_BACKOFF_MS,
    SCRAPE_QUEUE_KEEP_COMPLETED,
    SCRAPE_QUEUE_KEEP_COMPLETED_AGE,
    SCRAPE_QUEUE_KEEP_FAILED,
    SCRAPE_QUEUE_KEEP_FAILED_AGE,
    RESULTS_QUEUE_ATTEMPTS,
    RESULTS_QUEUE_BACKOFF_MS,
    RESULTS_QUEUE_KEEP_COMPLETED,
    RESULTS_QUEUE_KEEP_COMPLETED_AGE,
    RESULTS_QUEUE_KEEP_FAILED,
    RESULTS_QUEUE_KEEP_FAILED_AGE,
)
from email_pipeline.modules.job_queue import JobQueue, QueueOptions

logger = logging.getLogger(__name__)


def create_store(backend: str = None, database_url: str = None):
    """Open the queue store. Raises if Postgres is unreachable."""
    backend = (backend or QUEUE_BACKEND).lower()
    if backend == 'memory':
        from email_pipeline.memory_store import MemoryQueueStore
        logger.warning("Using in-memory queue store, jobs are lost when the process exits")
        return MemoryQueueStore()
    if backend != 'postgres':
        raise ValueError(f"Unknown QUEUE_BACKEND '{backend}' (expected 'postgres' or 'memory')")

    from email_pipeline.database import QueueDatabase
    logger.info("Initializing database connection...")
    return QueueDatabase(database_url or DATABASE_URL)


def create_queues(store) -> Dict[str, JobQueue]:
    """The three named queues with their configured retry and retention policies"""
    scrape_options = QueueOptions(
        attempts=SCRAPE_QUEUE_ATTEMPTS,
        backoff_delay_ms=SCRAPE_QUEUE_BACKOFF_MS,
        keep_completed_count=SCRAPE_QUEUE_KEEP_COMPLETED,
        keep_completed_age=SCRAPE_QUEUE_KEEP_COMPLETED_AGE,
        keep_failed_count=SCRAPE_QUEUE_KEEP_FAILED,
        keep_failed_age=SCRAPE_QUEUE_KEEP_FAILED_AGE,
    )
    results_options = QueueOptions(
        attempts=RESULTS_QUEUE_ATTEMPTS,
        backoff_delay_ms=RESULTS_QUEUE_BACKOFF_MS,
        keep_completed_count=RESULTS_QUEUE_KEEP_COMPLETED,
        keep_completed_age=RESULTS_QUEUE_KEEP_COMPLETED_AGE,
        keep_failed_count=RESULTS_QUEUE_KEEP_FAILED,
        keep_failed_age=RESULTS_QUEUE_KEEP_FAILED_AGE,
    )
    # Dead letters are only removed by an operator
    dead_letter_options = QueueOptions(
        attempts=1,
        keep_completed_count=RESULTS_QUEUE_KEEP_FAILED,
        keep_completed_age=RESULTS_QUEUE_KEEP_FAILED_AGE,
        keep_failed_count=RESULTS_QUEUE_KEEP_FAILED,
        keep_failed_age=RESULTS_QUEUE_KEEP_FAILED_AGE,
    )
    return {
        SCRAPE_QUEUE_NAME: JobQueue(SCRAPE_QUEUE_NAME, store, scrape_options),
        RESULTS_QUEUE_NAME: JobQueue(RESULTS_QUEUE_NAME, store, results_options),
        DEAD_LETTER_QUEUE_NAME: JobQueue(DEAD_LETTER_QUEUE_NAME, store, dead_letter_options),
    }


def install_shutdown_handlers(callback: Callable[[], None]):
    """Call callback on SIGINT/SIGTERM from inside the running event loop"""
    loop = asyncio.get_running_loop()

    def _handle_shutdown(signame):
        logger.info(f"Received {signame}, shutting down gracefully...")
        callback()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _handle_shutdown, signum.name)
        except (NotImplementedError, RuntimeError) as e:
            logger.warning(f"Signal handler setup skipped: {e}")
