"""In-process queue storage with the same interface as QueueDatabase.

Used by the single-process runner and the test suite. State lives only as long as the
process does.
"""
import copy
import itertools
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from email_pipeline.database import JOB_STATES

logger = logging.getLogger(__name__)


class MemoryQueueStore:
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._jobs: Dict[int, Dict] = {}
        self._keys: Dict[tuple, int] = {}
        self._paused = set()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _queue_jobs(self, queue_name: str) -> List[Dict]:
        return [job for job in self._jobs.values() if job['queue_name'] == queue_name]

    def _delete(self, jobs: List[Dict]) -> int:
        for job in jobs:
            self._jobs.pop(job['id'], None)
            self._keys.pop((job['queue_name'], job['job_key']), None)
        return len(jobs)

    def add_job(self, queue_name: str, name: str, job_key: str, data: Dict,
                max_attempts: int = 1, backoff_delay_ms: int = 0) -> Optional[int]:
        with self._lock:
            now = self.clock()
            # A key stays taken until retention, clean or obliterate removes its job
            if (queue_name, job_key) in self._keys:
                return None

            job_id = next(self._ids)
            self._jobs[job_id] = {
                'id': job_id,
                'queue_name': queue_name,
                'name': name,
                'job_key': job_key,
                'data': copy.deepcopy(data),
                'status': 'waiting',
                'attempts_made': 0,
                'max_attempts': max_attempts,
                'backoff_delay_ms': backoff_delay_ms,
                'last_error': None,
                'worker_id': None,
                'run_at': now,
                'started_at': None,
                'finished_at': None,
                'created_at': now,
            }
            self._keys[(queue_name, job_key)] = job_id
            return job_id

    def claim_next_job(self, queue_name: str, worker_id: str) -> Optional[Dict]:
        with self._lock:
            if queue_name in self._paused:
                return None
            now = self.clock()
            due = [
                job for job in self._queue_jobs(queue_name)
                if job['status'] in ('waiting', 'delayed') and job['run_at'] <= now
            ]
            if not due:
                return None
            job = min(due, key=lambda j: (j['run_at'], j['id']))
            job['status'] = 'active'
            job['started_at'] = now
            job['worker_id'] = worker_id
            return copy.deepcopy(job)

    def complete_job(self, job_id: int):
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job['status'] = 'completed'
                job['finished_at'] = self.clock()
                job['last_error'] = None

    def retry_job(self, job_id: int, error: str, delay_seconds: float):
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job['status'] = 'delayed' if delay_seconds > 0 else 'waiting'
                job['attempts_made'] += 1
                job['last_error'] = error
                job['worker_id'] = None
                job['started_at'] = None
                job['run_at'] = self.clock() + delay_seconds

    def fail_job(self, job_id: int, error: str):
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job['status'] = 'failed'
                job['attempts_made'] += 1
                job['last_error'] = error
                job['finished_at'] = self.clock()

    def prune_jobs(self, queue_name: str, status: str, keep_count: int, keep_age_seconds: int) -> int:
        with self._lock:
            cutoff = self.clock() - keep_age_seconds
            finished = sorted(
                (job for job in self._queue_jobs(queue_name) if job['status'] == status),
                key=lambda j: (j['finished_at'], j['id']),
                reverse=True,
            )
            expired = [job for job in finished[keep_count:] if job['finished_at'] < cutoff]
            return self._delete(expired)

    def requeue_stalled_jobs(self, queue_name: str, timeout_seconds: int) -> int:
        with self._lock:
            now = self.clock()
            requeued = 0
            for job in self._queue_jobs(queue_name):
                if job['status'] == 'active' and job['started_at'] < now - timeout_seconds:
                    job['status'] = 'waiting'
                    job['worker_id'] = None
                    job['started_at'] = None
                    job['run_at'] = now
                    requeued += 1
        if requeued > 0:
            logger.info(f"Requeued {requeued} stalled jobs in {queue_name}")
        return requeued

    def get_job_counts(self, queue_name: str) -> Dict[str, int]:
        with self._lock:
            counts = {state: 0 for state in JOB_STATES}
            for job in self._queue_jobs(queue_name):
                counts[job['status']] += 1
            return counts

    def set_paused(self, queue_name: str, paused: bool):
        with self._lock:
            if paused:
                self._paused.add(queue_name)
            else:
                self._paused.discard(queue_name)

    def is_paused(self, queue_name: str) -> bool:
        return queue_name in self._paused

    def drain(self, queue_name: str) -> int:
        with self._lock:
            return self._delete([
                job for job in self._queue_jobs(queue_name)
                if job['status'] in ('waiting', 'delayed')
            ])

    def clean(self, queue_name: str, grace_seconds: int, status: str) -> int:
        with self._lock:
            cutoff = self.clock() - grace_seconds
            return self._delete([
                job for job in self._queue_jobs(queue_name)
                if job['status'] == status
                and (job['finished_at'] if job['finished_at'] is not None else job['created_at']) < cutoff
            ])

    def obliterate(self, queue_name: str) -> int:
        with self._lock:
            self._paused.discard(queue_name)
            deleted = self._delete(self._queue_jobs(queue_name))
        logger.info(f"Obliterated queue {queue_name} ({deleted} jobs)")
        return deleted

    def get_job(self, queue_name: str, job_key: str) -> Optional[Dict]:
        with self._lock:
            job_id = self._keys.get((queue_name, job_key))
            return copy.deepcopy(self._jobs[job_id]) if job_id is not None else None

    def close(self):
        pass
