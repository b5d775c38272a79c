"""Named job queues with retry/backoff, retention and a bounded async consumer"""
import asyncio
import logging
import socket
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class QueueOptions:
    """Per-queue retry and retention policy"""

    attempts: int = 1
    backoff_delay_ms: int = 0
    keep_completed_count: int = 100
    keep_completed_age: int = 3600
    keep_failed_count: int = 500
    keep_failed_age: int = 86400


@dataclass
class Job:
    id: int
    queue_name: str
    name: str
    key: str
    data: Dict[str, Any] = field(default_factory=dict)
    attempts_made: int = 0
    max_attempts: int = 1
    backoff_delay_ms: int = 0
    status: str = 'waiting'
    last_error: Optional[str] = None

    @property
    def is_final_attempt(self) -> bool:
        """True while running the last attempt the queue will allow"""
        return self.attempts_made + 1 >= self.max_attempts

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Job':
        return cls(
            id=row['id'],
            queue_name=row['queue_name'],
            name=row['name'],
            key=row['job_key'],
            data=row.get('data') or {},
            attempts_made=row.get('attempts_made', 0),
            max_attempts=row.get('max_attempts', 1),
            backoff_delay_ms=row.get('backoff_delay_ms', 0),
            status=row.get('status', 'waiting'),
            last_error=row.get('last_error'),
        )


class JobQueue:
    """A named queue on top of a queue store (QueueDatabase or MemoryQueueStore).

    All methods are blocking; async callers go through ``asyncio.to_thread``.
    """

    def __init__(self, name: str, store, options: QueueOptions = None):
        self.name = name
        self.store = store
        self.options = options or QueueOptions()

    def add(self, name: str, data: Dict[str, Any], job_key: str = None) -> Optional[int]:
        """Enqueue data under job_key. Returns None if any job still holds the key."""
        job_key = job_key or uuid.uuid4().hex
        job_id = self.store.add_job(
            self.name,
            name,
            job_key,
            data,
            max_attempts=self.options.attempts,
            backoff_delay_ms=self.options.backoff_delay_ms,
        )
        if job_id is None:
            logger.debug(f"[{self.name}] Skipped duplicate job {job_key}")
        return job_id

    def claim(self, worker_id: str) -> Optional[Job]:
        row = self.store.claim_next_job(self.name, worker_id)
        return Job.from_row(row) if row else None

    def backoff_delay(self, attempts_made: int) -> float:
        """Seconds to wait before the next try, after attempts_made failures"""
        if self.options.backoff_delay_ms <= 0:
            return 0.0
        return self.options.backoff_delay_ms * (2 ** max(attempts_made - 1, 0)) / 1000.0

    def complete(self, job: Job):
        self.store.complete_job(job.id)
        self.store.prune_jobs(
            self.name, 'completed',
            self.options.keep_completed_count, self.options.keep_completed_age,
        )

    def fail(self, job: Job, error: str) -> bool:
        """Record a failed attempt. Returns True if the job will be retried."""
        if job.is_final_attempt:
            self.store.fail_job(job.id, error)
            self.store.prune_jobs(
                self.name, 'failed',
                self.options.keep_failed_count, self.options.keep_failed_age,
            )
            logger.error(f"[{self.name}] Job {job.key} failed after {job.attempts_made + 1} attempts: {error}")
            return False

        delay = self.backoff_delay(job.attempts_made + 1)
        self.store.retry_job(job.id, error, delay)
        logger.warning(
            f"[{self.name}] Job {job.key} failed (attempt {job.attempts_made + 1}/{job.max_attempts}), "
            f"retrying in {delay:.1f}s: {error}"
        )
        return True

    def requeue_stalled(self, timeout_seconds: int) -> int:
        return self.store.requeue_stalled_jobs(self.name, timeout_seconds)

    def pause(self):
        self.store.set_paused(self.name, True)
        logger.info(f"[{self.name}] Paused")

    def resume(self):
        self.store.set_paused(self.name, False)
        logger.info(f"[{self.name}] Resumed")

    def is_paused(self) -> bool:
        return self.store.is_paused(self.name)

    def drain(self) -> int:
        removed = self.store.drain(self.name)
        logger.info(f"[{self.name}] Drained {removed} pending jobs")
        return removed

    def clean(self, grace_seconds: int, status: str = 'completed') -> int:
        removed = self.store.clean(self.name, grace_seconds, status)
        logger.info(f"[{self.name}] Cleaned {removed} {status} jobs older than {grace_seconds}s")
        return removed

    def obliterate(self) -> int:
        return self.store.obliterate(self.name)

    def get_counts(self) -> Dict[str, int]:
        return self.store.get_job_counts(self.name)

    def get_job(self, job_key: str) -> Optional[Job]:
        row = self.store.get_job(self.name, job_key)
        return Job.from_row(row) if row else None


class RateLimiter:
    """Allow at most max_calls acquisitions in any window of period seconds"""

    def __init__(self, max_calls: int, period: float,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.max_calls = max_calls
        self.period = period
        self.clock = clock
        self.sleep = sleep
        self._calls = deque()
        self._lock = asyncio.Lock()

    async def acquire(self):
        async with self._lock:
            while True:
                now = self.clock()
                while self._calls and now - self._calls[0] >= self.period:
                    self._calls.popleft()
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                await self.sleep(self.period - (now - self._calls[0]))


class QueueConsumer:
    """Pushes jobs from a JobQueue into an async handler.

    At most ``concurrency`` handlers run at once and, with a rate limiter, at most
    ``max_calls`` start per period. A handler exception is logged and charged to the
    job's attempt budget; it never stops the consumer.
    """

    def __init__(self, queue: JobQueue, handler: Callable[[Job], Awaitable[Any]],
                 concurrency: int = 1, rate_limiter: RateLimiter = None,
                 poll_interval: float = 1.0, worker_id: str = None,
                 stalled_timeout: int = 600, stalled_check_interval: float = 60.0):
        self.queue = queue
        self.handler = handler
        self.concurrency = max(1, concurrency)
        self.rate_limiter = rate_limiter
        self.poll_interval = poll_interval
        self.worker_id = worker_id or f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"
        self.stalled_timeout = stalled_timeout
        self.stalled_check_interval = stalled_check_interval

        self.running = False
        self.processed_count = 0
        self.completed_count = 0
        self.failed_count = 0
        self.error_count = 0
        self.start_time = None

        self._stop_event = asyncio.Event()
        self._finished = asyncio.Event()
        self._tasks = set()
        self._last_stalled_check = 0.0

    async def run(self):
        """Consume until stop() is called, then wait for in-flight jobs"""
        self.running = True
        self.start_time = datetime.now()
        self._finished.clear()
        slots = asyncio.Semaphore(self.concurrency)
        logger.info(f"[{self.queue.name}] Consumer {self.worker_id} started (concurrency={self.concurrency})")

        try:
            while not self._stop_event.is_set():
                await slots.acquire()
                if self._stop_event.is_set():
                    slots.release()
                    break

                await self._check_stalled()

                try:
                    job = await asyncio.to_thread(self.queue.claim, self.worker_id)
                except Exception as e:
                    self.error_count += 1
                    logger.error(f"[{self.queue.name}] Failed to claim job: {e}", exc_info=True)
                    slots.release()
                    await self._idle()
                    continue

                if job is None:
                    slots.release()
                    await self._idle()
                    continue

                task = asyncio.create_task(self._process(job, slots))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

            if self._tasks:
                logger.info(f"[{self.queue.name}] Waiting for {len(self._tasks)} in-flight jobs...")
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
        finally:
            self.running = False
            self._finished.set()
            logger.info(
                f"[{self.queue.name}] Consumer stopped: processed={self.processed_count}, "
                f"completed={self.completed_count}, failed={self.failed_count}"
            )

    async def _process(self, job: Job, slots: asyncio.Semaphore):
        try:
            if self.rate_limiter:
                await self.rate_limiter.acquire()

            try:
                await self.handler(job)
            except Exception as e:
                self.failed_count += 1
                logger.warning(f"[{self.queue.name}] Handler failed for job {job.key}: {e}", exc_info=True)
                await asyncio.to_thread(self.queue.fail, job, str(e) or type(e).__name__)
            else:
                self.completed_count += 1
                await asyncio.to_thread(self.queue.complete, job)
        except Exception as e:
            self.error_count += 1
            logger.error(f"[{self.queue.name}] Could not record result of job {job.key}: {e}", exc_info=True)
        finally:
            self.processed_count += 1
            slots.release()

    async def _check_stalled(self):
        now = time.monotonic()
        if now - self._last_stalled_check < self.stalled_check_interval:
            return
        self._last_stalled_check = now
        try:
            await asyncio.to_thread(self.queue.requeue_stalled, self.stalled_timeout)
        except Exception as e:
            logger.warning(f"[{self.queue.name}] Stalled job check failed: {e}")

    async def _idle(self):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    def stop(self):
        self._stop_event.set()

    async def close(self):
        """Stop taking jobs and wait for the ones in flight"""
        self.stop()
        if self.running:
            await self._finished.wait()

    def get_status(self) -> Dict[str, Any]:
        uptime = None
        if self.start_time:
            uptime = (datetime.now() - self.start_time).total_seconds()
        return {
            'queue': self.queue.name,
            'worker_id': self.worker_id,
            'running': self.running,
            'in_flight': len(self._tasks),
            'processed_count': self.processed_count,
            'completed_count': self.completed_count,
            'failed_count': self.failed_count,
            'error_count': self.error_count,
            'uptime_seconds': uptime,
        }
