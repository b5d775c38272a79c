#!/usr/bin/env python3
"""Ingestor service: polls Google Sheets and fills scrape-queue"""
import asyncio
import logging
import sys

from email_pipeline.config import (
    SCRAPE_QUEUE_NAME,
    GOOGLE_SHEET_IDS,
    INGESTOR_BATCH_SIZE,
    INGESTOR_POLL_INTERVAL_MS,
    INGESTOR_BURST_DELAY_MS,
)
from email_pipeline.log import setup_logging
from email_pipeline.modules.sheet_ingestor import SheetIngestor
from email_pipeline.services import create_queues, create_store, install_shutdown_handlers
from email_pipeline.syncer import build_sheets_client

logger = logging.getLogger(__name__)


def build_ingestor(queues, source) -> SheetIngestor:
    return SheetIngestor(
        source,
        queues[SCRAPE_QUEUE_NAME],
        batch_size=INGESTOR_BATCH_SIZE,
        poll_interval=INGESTOR_POLL_INTERVAL_MS / 1000.0,
        burst_delay=INGESTOR_BURST_DELAY_MS / 1000.0,
    )


async def run_ingestor(store, sheet_ids):
    queues = create_queues(store)
    ingestor = build_ingestor(queues, build_sheets_client())
    install_shutdown_handlers(ingestor.stop)
    await ingestor.run(sheet_ids)


def main():
    """Main entry point for the ingestor"""
    setup_logging('ingestor')
    if not GOOGLE_SHEET_IDS:
        logger.warning("GOOGLE_SHEET_ID is not set, nothing to ingest. Exiting.")
        return

    try:
        store = create_store()
    except Exception as e:
        logger.error(f"Failed to start ingestor: {e}", exc_info=True)
        sys.exit(1)

    try:
        asyncio.run(run_ingestor(store, GOOGLE_SHEET_IDS))
    except KeyboardInterrupt:
        logger.info("Received KeyboardInterrupt, shutting down...")
    except Exception as e:
        logger.error(f"Ingestor error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        store.close()

    logger.info("Ingestor stopped gracefully")


if __name__ == '__main__':
    main()
