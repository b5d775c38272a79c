"""PostgreSQL queue storage for the Page Email Pipeline"""
import psycopg2
import psycopg2.extras
import logging
import time
from typing import Dict, Optional

from email_pipeline.config import DATABASE_URL

logger = logging.getLogger(__name__)

JOB_STATES = ('waiting', 'active', 'delayed', 'completed', 'failed')


class QueueDatabase:
    """Job storage shared by every named queue.

    Rows live in ``queue_jobs`` keyed by ``(queue_name, job_key)``; the pause flag of
    each queue lives in ``queue_state``. Several processes may consume the same queue,
    claiming is done with ``FOR UPDATE SKIP LOCKED``.
    """

    def __init__(self, database_url: str = None):
        self.database_url = database_url or DATABASE_URL
        self.init_database()

    def get_connection(self, retries: int = 3, retry_delay: float = 1.0):
        """Get database connection with retry logic"""
        for attempt in range(retries):
            try:
                conn = psycopg2.connect(self.database_url)
                return conn
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                if attempt < retries - 1:
                    logger.warning(f"Database connection failed (attempt {attempt + 1}/{retries}): {e}. Retrying...")
                    time.sleep(retry_delay * (attempt + 1))
                else:
                    logger.error(f"Database connection failed after {retries} attempts: {e}")
                    raise

    def init_database(self):
        """Initialize queue schema"""
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS queue_jobs (
                id BIGSERIAL PRIMARY KEY,
                queue_name TEXT NOT NULL,
                name TEXT NOT NULL,
                job_key TEXT NOT NULL,
                data JSONB NOT NULL DEFAULT '{}'::jsonb,
                status TEXT NOT NULL DEFAULT 'waiting',
                attempts_made INTEGER NOT NULL DEFAULT 0,
                max_attempts INTEGER NOT NULL DEFAULT 1,
                backoff_delay_ms INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                worker_id TEXT,
                run_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                started_at TIMESTAMP,
                finished_at TIMESTAMP,
                created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (queue_name, job_key)
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_queue_jobs_claim
            ON queue_jobs (queue_name, status, run_at, id)
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS queue_state (
                queue_name TEXT PRIMARY KEY,
                paused BOOLEAN NOT NULL DEFAULT FALSE,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()
        conn.close()
        logger.info("Queue database initialized")

    def add_job(self, queue_name: str, name: str, job_key: str, data: Dict,
                max_attempts: int = 1, backoff_delay_ms: int = 0) -> Optional[int]:
        """Insert a job. Returns None when any job already holds the key.

        Finished jobs keep their key until retention, clean or obliterate removes them.
        """
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            INSERT INTO queue_jobs (queue_name, name, job_key, data, max_attempts, backoff_delay_ms)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (queue_name, job_key) DO NOTHING
            RETURNING id
        """, (queue_name, name, job_key, psycopg2.extras.Json(data), max_attempts, backoff_delay_ms))

        row = cursor.fetchone()
        conn.commit()
        conn.close()
        return row[0] if row else None

    def claim_next_job(self, queue_name: str, worker_id: str) -> Optional[Dict]:
        """Move the oldest due job to active and return it (None if paused or empty)"""
        conn = self.get_connection()
        cursor = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)

        cursor.execute("""
            UPDATE queue_jobs
            SET status = 'active', started_at = CURRENT_TIMESTAMP, worker_id = %s
            WHERE id = (
                SELECT id FROM queue_jobs
                WHERE queue_name = %s
                AND status IN ('waiting', 'delayed')
                AND run_at <= CURRENT_TIMESTAMP
                AND NOT EXISTS (
                    SELECT 1 FROM queue_state
                    WHERE queue_state.queue_name = %s AND queue_state.paused
                )
                ORDER BY run_at, id
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            )
            RETURNING *
        """, (worker_id, queue_name, queue_name))

        row = cursor.fetchone()
        conn.commit()
        conn.close()
        return dict(row) if row else None

    def complete_job(self, job_id: int):
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            UPDATE queue_jobs
            SET status = 'completed', finished_at = CURRENT_TIMESTAMP, last_error = NULL
            WHERE id = %s
        """, (job_id,))

        conn.commit()
        conn.close()

    def retry_job(self, job_id: int, error: str, delay_seconds: float):
        """Count a failed attempt and schedule the job again after delay_seconds"""
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            UPDATE queue_jobs
            SET status = CASE WHEN %s > 0 THEN 'delayed' ELSE 'waiting' END,
                attempts_made = attempts_made + 1,
                last_error = %s,
                worker_id = NULL,
                started_at = NULL,
                run_at = CURRENT_TIMESTAMP + make_interval(secs => %s)
            WHERE id = %s
        """, (delay_seconds, error, delay_seconds, job_id))

        conn.commit()
        conn.close()

    def fail_job(self, job_id: int, error: str):
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            UPDATE queue_jobs
            SET status = 'failed',
                attempts_made = attempts_made + 1,
                last_error = %s,
                finished_at = CURRENT_TIMESTAMP
            WHERE id = %s
        """, (error, job_id))

        conn.commit()
        conn.close()

    def prune_jobs(self, queue_name: str, status: str, keep_count: int, keep_age_seconds: int) -> int:
        """Delete finished jobs beyond the newest keep_count that are also older than keep_age_seconds"""
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            DELETE FROM queue_jobs
            WHERE id IN (
                SELECT id FROM (
                    SELECT id, finished_at,
                           ROW_NUMBER() OVER (ORDER BY finished_at DESC, id DESC) AS rank
                    FROM queue_jobs
                    WHERE queue_name = %s AND status = %s
                ) ranked
                WHERE ranked.rank > %s
                AND ranked.finished_at < CURRENT_TIMESTAMP - make_interval(secs => %s)
            )
        """, (queue_name, status, keep_count, keep_age_seconds))

        deleted = cursor.rowcount
        conn.commit()
        conn.close()
        return deleted

    def requeue_stalled_jobs(self, queue_name: str, timeout_seconds: int) -> int:
        """Return jobs stuck in active (crashed worker) to waiting"""
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            UPDATE queue_jobs
            SET status = 'waiting', worker_id = NULL, started_at = NULL, run_at = CURRENT_TIMESTAMP
            WHERE queue_name = %s
            AND status = 'active'
            AND started_at < CURRENT_TIMESTAMP - make_interval(secs => %s)
        """, (queue_name, timeout_seconds))

        requeued = cursor.rowcount
        conn.commit()
        conn.close()

        if requeued > 0:
            logger.info(f"Requeued {requeued} stalled jobs in {queue_name}")

        return requeued

    def get_job_counts(self, queue_name: str) -> Dict[str, int]:
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            SELECT status, COUNT(*) FROM queue_jobs
            WHERE queue_name = %s
            GROUP BY status
        """, (queue_name,))

        counts = {state: 0 for state in JOB_STATES}
        for status, count in cursor.fetchall():
            counts[status] = count
        conn.close()
        return counts

    def set_paused(self, queue_name: str, paused: bool):
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            INSERT INTO queue_state (queue_name, paused)
            VALUES (%s, %s)
            ON CONFLICT (queue_name) DO UPDATE
            SET paused = EXCLUDED.paused, updated_at = CURRENT_TIMESTAMP
        """, (queue_name, paused))

        conn.commit()
        conn.close()

    def is_paused(self, queue_name: str) -> bool:
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("SELECT paused FROM queue_state WHERE queue_name = %s", (queue_name,))
        row = cursor.fetchone()
        conn.close()
        return bool(row and row[0])

    def drain(self, queue_name: str) -> int:
        """Remove every job that has not started yet"""
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            DELETE FROM queue_jobs
            WHERE queue_name = %s AND status IN ('waiting', 'delayed')
        """, (queue_name,))

        deleted = cursor.rowcount
        conn.commit()
        conn.close()
        return deleted

    def clean(self, queue_name: str, grace_seconds: int, status: str) -> int:
        """Remove jobs in status that finished (or were created) more than grace_seconds ago"""
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            DELETE FROM queue_jobs
            WHERE queue_name = %s
            AND status = %s
            AND COALESCE(finished_at, created_at) < CURRENT_TIMESTAMP - make_interval(secs => %s)
        """, (queue_name, status, grace_seconds))

        deleted = cursor.rowcount
        conn.commit()
        conn.close()
        return deleted

    def obliterate(self, queue_name: str) -> int:
        """Remove the queue entirely, jobs and pause flag"""
        conn = self.get_connection()
        cursor = conn.cursor()

        cursor.execute("DELETE FROM queue_jobs WHERE queue_name = %s", (queue_name,))
        deleted = cursor.rowcount
        cursor.execute("DELETE FROM queue_state WHERE queue_name = %s", (queue_name,))

        conn.commit()
        conn.close()
        logger.info(f"Obliterated queue {queue_name} ({deleted} jobs)")
        return deleted

    def get_job(self, queue_name: str, job_key: str) -> Optional[Dict]:
        conn = self.get_connection()
        cursor = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)

        cursor.execute("""
            SELECT * FROM queue_jobs
            WHERE queue_name = %s AND job_key = %s
        """, (queue_name, job_key))

        row = cursor.fetchone()
        conn.close()
        return dict(row) if row else None

    def close(self):
        # Connections are opened per call
        pass
