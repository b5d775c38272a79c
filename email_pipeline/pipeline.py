#!/usr/bin/env python3
"""Run worker, syncer and ingestor in one event loop over a shared queue store"""
import asyncio
import logging
import sys

from email_pipeline.config import BROWSER_HEADLESS, GOOGLE_SHEET_IDS, USER_AGENT
from email_pipeline.ingestor import build_ingestor
from email_pipeline.log import setup_logging
from email_pipeline.modules.browser_pool import BrowserPool
from email_pipeline.services import create_queues, create_store, install_shutdown_handlers
from email_pipeline.syncer import build_sheets_client, build_syncer
from email_pipeline.worker import build_worker

logger = logging.getLogger(__name__)


async def run_pipeline(store, sheet_ids):
    queues = create_queues(store)
    sheets = build_sheets_client()
    browser_pool = BrowserPool(headless=BROWSER_HEADLESS, user_agent=USER_AGENT)

    scrape_consumer = build_worker(queues, browser_pool)
    results_consumer, batcher = build_syncer(queues, sheets)
    ingestor = build_ingestor(queues, sheets) if sheet_ids else None

    def shutdown():
        if ingestor:
            ingestor.stop()
        scrape_consumer.stop()
        results_consumer.stop()

    install_shutdown_handlers(shutdown)
    batcher.start()

    services = [scrape_consumer.run(), results_consumer.run()]
    if ingestor:
        services.append(ingestor.run(sheet_ids))
    else:
        logger.warning("GOOGLE_SHEET_ID is not set, ingestor disabled (use the API to enqueue)")

    logger.info("Pipeline running, press Ctrl+C to stop")
    try:
        await asyncio.gather(*services)
    finally:
        shutdown()
        await browser_pool.close()
        logger.info("Flushing remaining outcomes before exit...")
        await batcher.close()


def main():
    """Main entry point for the all-in-one runner"""
    setup_logging('pipeline')
    try:
        store = create_store()
    except Exception as e:
        logger.error(f"Failed to start pipeline: {e}", exc_info=True)
        sys.exit(1)

    try:
        asyncio.run(run_pipeline(store, GOOGLE_SHEET_IDS))
    except KeyboardInterrupt:
        logger.info("Received KeyboardInterrupt, shutting down...")
    except Exception as e:
        logger.error(f"Pipeline error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        store.close()

    logger.info("Pipeline stopped gracefully")


if __name__ == '__main__':
    main()
