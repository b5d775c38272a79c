"""Buffers outcomes per sheet and writes them in batches"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from email_pipeline.models import Outcome
from email_pipeline.modules.job_queue import JobQueue
from email_pipeline.modules.sheets import RateLimitError

logger = logging.getLogger(__name__)

DEAD_LETTER_JOB = 'dropped-outcome'


class SinkBatcher:
    """Size-or-time triggered batch writer in front of the sheet.

    ``buffer`` maps destination id to outcomes in arrival order. A flush writes each
    destination in one call; only the items that were part of that write are removed,
    so outcomes added while a flush is in progress wait for the next one. Quota errors
    are retried with doubling delays and the buffer left untouched; after the last try,
    or on any other error, the batch is dropped and sent to the dead-letter queue.
    """

    def __init__(self, sink, buffer_size: int = 50, flush_interval: float = 30.0,
                 max_retries: int = 3, retry_base_delay: float = 2.0,
                 dead_letter: Optional[JobQueue] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.sink = sink
        self.buffer_size = buffer_size
        self.flush_interval = flush_interval
        self.max_retries = max(1, max_retries)
        self.retry_base_delay = retry_base_delay
        self.dead_letter = dead_letter
        self.sleep = sleep

        self.buffer: Dict[str, List[Outcome]] = {}
        self.flush_count = 0
        self.written_count = 0
        self.dropped_count = 0

        self._flush_lock = asyncio.Lock()
        self._timer: Optional[asyncio.Task] = None
        self._timed_flush: Optional[asyncio.Future] = None
        self._timer_enabled = False

    @property
    def total_buffered(self) -> int:
        return sum(len(items) for items in self.buffer.values())

    def start(self):
        """Arm the periodic flush timer (needs a running event loop)"""
        self._timer_enabled = True
        self._arm_timer()

    def _arm_timer(self):
        self._cancel_timer()
        if self._timer_enabled:
            self._timer = asyncio.get_running_loop().create_task(self._timer_loop())

    def _cancel_timer(self):
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _timer_loop(self):
        while True:
            await asyncio.sleep(self.flush_interval)
            total = self.total_buffered
            if total > 0:
                logger.info(f"Flush interval reached ({self.flush_interval}s), flushing {total} outcomes...")
                self._timed_flush = asyncio.ensure_future(self.flush())
                self._timed_flush.add_done_callback(self._log_timed_flush)
                try:
                    # Shielded so a threshold flush cancelling the timer cannot cut a write short
                    await asyncio.shield(self._timed_flush)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    # already logged by _log_timed_flush
                    continue

    @staticmethod
    def _log_timed_flush(task: asyncio.Future):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Timed flush failed: {error}", exc_info=error)

    async def add(self, outcome: Outcome):
        self.buffer.setdefault(outcome.destination_id, []).append(outcome)
        total = self.total_buffered
        logger.debug(f"Buffered outcome for row {outcome.row_index}. Total buffered: {total}")

        if total >= self.buffer_size:
            logger.info(f"Buffer size reached ({self.buffer_size}), flushing...")
            self._cancel_timer()
            try:
                await self.flush()
            finally:
                self._arm_timer()

    async def flush(self) -> int:
        """Write every destination's pending outcomes. Returns the number written."""
        async with self._flush_lock:
            destinations = [dest for dest, items in self.buffer.items() if items]
            if not destinations:
                return 0

            self.flush_count += 1
            logger.info(f"Flushing buffer for {len(destinations)} sheet(s)...")
            written = 0
            for destination_id in destinations:
                batch = list(self.buffer[destination_id])
                written += await self._write_destination(destination_id, batch)

                # Outcomes that arrived during the write stay for the next flush
                remaining = self.buffer.get(destination_id, [])[len(batch):]
                if remaining:
                    self.buffer[destination_id] = remaining
                else:
                    self.buffer.pop(destination_id, None)

            logger.info(f"Flush complete: {written} outcomes written")
            return written

    async def _write_destination(self, destination_id: str, batch: List[Outcome]) -> int:
        attempt = 0
        while True:
            attempt += 1
            try:
                await asyncio.to_thread(self.sink.write_outcomes, destination_id, batch)
                self.written_count += len(batch)
                logger.info(f"Flushed {len(batch)} outcomes to sheet {destination_id}")
                return len(batch)
            except RateLimitError as e:
                if attempt >= self.max_retries:
                    logger.error(
                        f"Rate limit retry exhausted for sheet {destination_id}, "
                        f"dropping {len(batch)} outcomes: {e}"
                    )
                    await self._drop(destination_id, batch, f"rate limit retries exhausted: {e}")
                    return 0
                delay = self.retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Rate limit hit for sheet {destination_id}. "
                    f"Retry {attempt}/{self.max_retries - 1} after {delay:.1f}s..."
                )
                await self.sleep(delay)
            except Exception as e:
                logger.error(f"Failed to flush outcomes for sheet {destination_id}: {e}", exc_info=True)
                await self._drop(destination_id, batch, str(e))
                return 0

    async def _drop(self, destination_id: str, batch: List[Outcome], reason: str):
        self.dropped_count += len(batch)
        rows = ', '.join(str(outcome.row_index) for outcome in batch)
        logger.error(f"Dropped {len(batch)} outcomes for sheet {destination_id} (rows {rows})")
        if self.dead_letter is None:
            return
        for outcome in batch:
            payload = {
                'destinationId': destination_id,
                'reason': reason,
                'outcome': outcome.to_dict(),
            }
            try:
                await asyncio.to_thread(self.dead_letter.add, DEAD_LETTER_JOB, payload)
            except Exception as e:
                logger.error(f"Could not dead-letter row {outcome.row_index} of {destination_id}: {e}")

    async def close(self):
        """Stop the timer and flush whatever is left"""
        self._timer_enabled = False
        self._cancel_timer()
        if self._timed_flush is not None and not self._timed_flush.done():
            await asyncio.gather(self._timed_flush, return_exceptions=True)
        await self.flush()

    def get_status(self) -> Dict[str, int]:
        return {
            'buffered': self.total_buffered,
            'flush_count': self.flush_count,
            'written_count': self.written_count,
            'dropped_count': self.dropped_count,
        }
