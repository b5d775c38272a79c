#!/usr/bin/env python3
"""Syncer service: consumes results-queue and batch-writes outcomes to Google Sheets"""
import asyncio
import logging
import sys
from typing import Tuple

from email_pipeline.config import (
    RESULTS_QUEUE_NAME,
    DEAD_LETTER_QUEUE_NAME,
    DEAD_LETTER_ENABLED,
    QUEUE_POLL_INTERVAL,
    STALLED_JOB_TIMEOUT_SECONDS,
    SYNC_BUFFER_SIZE,
    SYNC_FLUSH_INTERVAL_MS,
    SYNC_MAX_RETRIES,
    SYNC_RETRY_BASE_MS,
    GOOGLE_SERVICE_ACCOUNT_EMAIL,
    GOOGLE_PRIVATE_KEY,
    GOOGLE_SERVICE_ACCOUNT_FILE,
)
from email_pipeline.log import setup_logging
from email_pipeline.models import Outcome
from email_pipeline.modules.job_queue import Job, QueueConsumer
from email_pipeline.modules.sheets import SheetsClient
from email_pipeline.modules.sink_batcher import SinkBatcher
from email_pipeline.services import create_queues, create_store, install_shutdown_handlers

logger = logging.getLogger(__name__)


def build_sheets_client() -> SheetsClient:
    return SheetsClient(
        service_account_email=GOOGLE_SERVICE_ACCOUNT_EMAIL,
        private_key=GOOGLE_PRIVATE_KEY,
        service_account_file=GOOGLE_SERVICE_ACCOUNT_FILE,
    )


def build_syncer(queues, sink) -> Tuple[QueueConsumer, SinkBatcher]:
    """Results consumer feeding a SinkBatcher. The batcher timer is armed by the caller."""
    batcher = SinkBatcher(
        sink,
        buffer_size=SYNC_BUFFER_SIZE,
        flush_interval=SYNC_FLUSH_INTERVAL_MS / 1000.0,
        max_retries=SYNC_MAX_RETRIES,
        retry_base_delay=SYNC_RETRY_BASE_MS / 1000.0,
        dead_letter=queues[DEAD_LETTER_QUEUE_NAME] if DEAD_LETTER_ENABLED else None,
    )

    async def buffer_outcome(job: Job):
        await batcher.add(Outcome.from_dict(job.data))

    # One at a time so the buffer sees outcomes in queue order
    consumer = QueueConsumer(
        queues[RESULTS_QUEUE_NAME],
        buffer_outcome,
        concurrency=1,
        poll_interval=QUEUE_POLL_INTERVAL,
        stalled_timeout=STALLED_JOB_TIMEOUT_SECONDS,
    )
    return consumer, batcher


async def run_syncer(store):
    queues = create_queues(store)
    consumer, batcher = build_syncer(queues, build_sheets_client())
    install_shutdown_handlers(consumer.stop)
    batcher.start()

    logger.info(
        f"Syncer started (buffer={SYNC_BUFFER_SIZE}, flush interval={SYNC_FLUSH_INTERVAL_MS}ms), "
        f"press Ctrl+C to stop"
    )
    try:
        await consumer.run()
    finally:
        logger.info("Flushing remaining outcomes before exit...")
        await batcher.close()


def main():
    """Main entry point for the syncer"""
    setup_logging('syncer')
    try:
        store = create_store()
    except Exception as e:
        logger.error(f"Failed to start syncer: {e}", exc_info=True)
        sys.exit(1)

    try:
        asyncio.run(run_syncer(store))
    except KeyboardInterrupt:
        logger.info("Received KeyboardInterrupt, shutting down...")
    except Exception as e:
        logger.error(f"Syncer error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        store.close()

    logger.info("Syncer stopped gracefully")


if __name__ == '__main__':
    main()
