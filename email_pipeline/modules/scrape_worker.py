"""Scrape-queue handler: one Task in, one Outcome out"""
import asyncio
import logging
from typing import Any, Dict

from email_pipeline.models import Outcome, ScrapeTask
from email_pipeline.modules.job_queue import Job, JobQueue
from email_pipeline.modules.page_scraper import PageScraper, ScrapeStatus

logger = logging.getLogger(__name__)

WRITE_RESULT_JOB = 'write-result'


class ScrapeFailedError(Exception):
    """Raised to hand a failed scrape back to the queue for a delayed retry"""


class ScrapeWorker:
    def __init__(self, scraper: PageScraper, results_queue: JobQueue):
        self.scraper = scraper
        self.results_queue = results_queue
        self.found_count = 0
        self.not_found_count = 0
        self.failed_count = 0

    async def process_job(self, job: Job) -> Dict[str, Any]:
        task = ScrapeTask.from_dict(job.data)
        logger.info(f"Processing row {task.row_index} of {task.destination_id}: {task.url}")

        result = await self.scraper.scrape(task.url)

        if result.status == ScrapeStatus.FAILED:
            if not job.is_final_attempt:
                raise ScrapeFailedError(f"Scrape failed for {task.url}: {result.error}")
            self.failed_count += 1
            outcome = Outcome.for_task(task, None, failed=True)
            logger.error(f"Row {task.row_index} failed on final attempt, writing Failed status")
        elif result.status == ScrapeStatus.DONE:
            self.found_count += 1
            outcome = Outcome.for_task(task, result.value)
        else:
            self.not_found_count += 1
            outcome = Outcome.for_task(task, None)

        await asyncio.to_thread(
            self.results_queue.add, WRITE_RESULT_JOB, outcome.to_dict(), outcome.dedup_key
        )
        return outcome.to_dict()

    def get_status(self) -> Dict[str, int]:
        return {
            'found_count': self.found_count,
            'not_found_count': self.not_found_count,
            'failed_count': self.failed_count,
        }
