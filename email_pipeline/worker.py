#!/usr/bin/env python3
"""Scrape worker service: consumes scrape-queue, produces results-queue"""
import asyncio
import logging
import sys

from email_pipeline.config import (
    SCRAPE_QUEUE_NAME,
    RESULTS_QUEUE_NAME,
    WORKER_CONCURRENCY,
    WORKER_RATE_MAX,
    WORKER_RATE_DURATION_MS,
    QUEUE_POLL_INTERVAL,
    STALLED_JOB_TIMEOUT_SECONDS,
    FACEBOOK_COOKIES,
    FACEBOOK_COOKIES_FILE,
    BROWSER_HEADLESS,
    USER_AGENT,
    SCRAPER_NAV_TIMEOUT_MS,
    SCRAPER_RENDER_WAIT_MS,
)
from email_pipeline.log import setup_logging
from email_pipeline.modules.browser_pool import BrowserPool
from email_pipeline.modules.job_queue import QueueConsumer, RateLimiter
from email_pipeline.modules.page_scraper import PageScraper
from email_pipeline.modules.scrape_worker import ScrapeWorker
from email_pipeline.modules.session_store import SessionStore
from email_pipeline.services import create_queues, create_store, install_shutdown_handlers

logger = logging.getLogger(__name__)


def build_worker(queues, browser_pool: BrowserPool, session_store: SessionStore = None) -> QueueConsumer:
    """Scrape consumer wired from config"""
    session_store = session_store or SessionStore.from_env(FACEBOOK_COOKIES, FACEBOOK_COOKIES_FILE)
    scraper = PageScraper(
        browser_pool,
        session_store,
        navigation_timeout_ms=SCRAPER_NAV_TIMEOUT_MS,
        render_wait_ms=SCRAPER_RENDER_WAIT_MS,
    )
    worker = ScrapeWorker(scraper, queues[RESULTS_QUEUE_NAME])
    return QueueConsumer(
        queues[SCRAPE_QUEUE_NAME],
        worker.process_job,
        concurrency=WORKER_CONCURRENCY,
        rate_limiter=RateLimiter(WORKER_RATE_MAX, WORKER_RATE_DURATION_MS / 1000.0),
        poll_interval=QUEUE_POLL_INTERVAL,
        stalled_timeout=STALLED_JOB_TIMEOUT_SECONDS,
    )


async def run_worker(store):
    queues = create_queues(store)
    browser_pool = BrowserPool(headless=BROWSER_HEADLESS, user_agent=USER_AGENT)
    consumer = build_worker(queues, browser_pool)
    install_shutdown_handlers(consumer.stop)

    logger.info(
        f"Worker started (concurrency={WORKER_CONCURRENCY}, "
        f"rate={WORKER_RATE_MAX}/{WORKER_RATE_DURATION_MS}ms), press Ctrl+C to stop"
    )
    try:
        await consumer.run()
    finally:
        await browser_pool.close()


def main():
    """Main entry point for the scrape worker"""
    setup_logging('worker')
    try:
        store = create_store()
    except Exception as e:
        logger.error(f"Failed to start worker: {e}", exc_info=True)
        sys.exit(1)

    try:
        asyncio.run(run_worker(store))
    except KeyboardInterrupt:
        logger.info("Received KeyboardInterrupt, shutting down...")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        store.close()

    logger.info("Worker stopped gracefully")


if __name__ == '__main__':
    main()
