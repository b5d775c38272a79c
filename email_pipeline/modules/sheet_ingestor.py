"""Polls sheets for unprocessed rows and feeds the scrape queue"""
import asyncio
import logging
from typing import List

from email_pipeline.models import ScrapeTask
from email_pipeline.modules.job_queue import JobQueue

logger = logging.getLogger(__name__)

SCRAPE_URL_JOB = 'scrape-url'


def enqueue_tasks(scrape_queue: JobQueue, tasks: List[ScrapeTask]) -> int:
    """Add tasks under their dedup keys. Returns how many were actually inserted."""
    added = 0
    for task in tasks:
        if scrape_queue.add(SCRAPE_URL_JOB, task.to_dict(), task.dedup_key) is not None:
            added += 1
    return added


class SheetIngestor:
    """Greedy poll loop: re-polls quickly while rows keep appearing, else waits the full interval"""

    def __init__(self, source, scrape_queue: JobQueue, batch_size: int = 100,
                 poll_interval: float = 60.0, burst_delay: float = 5.0):
        self.source = source
        self.scrape_queue = scrape_queue
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.burst_delay = burst_delay
        self.running = False
        self.poll_count = 0
        self.enqueued_count = 0
        self.error_count = 0
        self._stop_event = asyncio.Event()

    def poll_once(self, destination_id: str) -> int:
        """Enqueue up to batch_size pending rows of one sheet (blocking)"""
        logger.info(f"Polling sheet {destination_id} for pending rows...")
        rows = self.source.get_pending_rows(destination_id, self.batch_size)
        if not rows:
            logger.info("No pending rows found")
            return 0

        tasks = [ScrapeTask(url=row.url, row_index=row.row_index, destination_id=destination_id) for row in rows]
        added = enqueue_tasks(self.scrape_queue, tasks)
        self.enqueued_count += added
        logger.info(f"Added {added} new jobs to queue ({len(rows) - added} were duplicates)")
        return added

    async def run(self, destination_ids: List[str]):
        self.running = True
        logger.info(
            f"Starting ingestor for {', '.join(destination_ids)} "
            f"(batch={self.batch_size}, poll={self.poll_interval}s, burst={self.burst_delay}s)"
        )
        try:
            while not self._stop_event.is_set():
                self.poll_count += 1
                added = 0
                for destination_id in destination_ids:
                    try:
                        added += await asyncio.to_thread(self.poll_once, destination_id)
                    except Exception as e:
                        self.error_count += 1
                        logger.error(f"Failed to poll sheet {destination_id}: {e}", exc_info=True)

                if added > 0:
                    logger.info(f"Found rows, checking for more in {self.burst_delay}s...")
                    delay = self.burst_delay
                else:
                    logger.info(f"No new rows. Sleeping for {self.poll_interval}s...")
                    delay = self.poll_interval

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.running = False
            logger.info(f"Ingestor stopped after {self.poll_count} polls, {self.enqueued_count} jobs enqueued")

    def stop(self):
        self._stop_event.set()

    def get_status(self):
        return {
            'running': self.running,
            'poll_count': self.poll_count,
            'enqueued_count': self.enqueued_count,
            'error_count': self.error_count,
        }
