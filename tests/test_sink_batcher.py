import asyncio
import threading

import pytest
from fakes import FakeSink, quota_error

from email_pipeline.models import Outcome
from email_pipeline.modules.job_queue import JobQueue
from email_pipeline.modules.sheets import SinkError
from email_pipeline.modules.sink_batcher import SinkBatcher


def outcome(row, destination='sheet-a', email='x@example.com'):
    return Outcome(row_index=row, destination_id=destination, url=f'https://fb.com/{row}', email=email)


class SleepRecorder:
    def __init__(self):
        self.delays = []
        self.buffered = []
        self.batcher = None

    async def __call__(self, seconds):
        self.delays.append(seconds)
        self.buffered.append(self.batcher.total_buffered)


def test_size_threshold_triggers_exactly_one_flush():
    sink = FakeSink()

    async def run():
        batcher = SinkBatcher(sink, buffer_size=50)
        for row in range(2, 51):
            await batcher.add(outcome(row))
        assert sink.calls == []

        await batcher.add(outcome(51))
        assert len(sink.writes) == 1
        assert batcher.total_buffered == 0

        await batcher.add(outcome(52))
        return batcher

    batcher = asyncio.run(run())

    assert len(sink.writes) == 1
    assert len(sink.writes[0][1]) == 50
    assert batcher.total_buffered == 1


def test_timer_flushes_a_single_outcome_once():
    sink = FakeSink()

    async def run():
        batcher = SinkBatcher(sink, buffer_size=50, flush_interval=0.05)
        batcher.start()
        await batcher.add(outcome(2))
        await asyncio.sleep(0.3)
        await batcher.close()

    asyncio.run(run())

    assert sink.writes == [('sheet-a', [2])]


def test_flush_groups_by_destination_in_arrival_order():
    sink = FakeSink()

    async def run():
        batcher = SinkBatcher(sink, buffer_size=100)
        for row, dest in [(5, 'a'), (2, 'b'), (3, 'a'), (9, 'b'), (4, 'a')]:
            await batcher.add(outcome(row, dest))
        return await batcher.flush()

    written = asyncio.run(run())

    assert written == 5
    assert sink.writes == [('a', [5, 3, 4]), ('b', [2, 9])]


def test_rate_limit_retries_with_growing_backoff_and_intact_buffer():
    sink = FakeSink(errors=[quota_error(), quota_error(), quota_error()])
    sleep = SleepRecorder()

    async def run():
        batcher = SinkBatcher(sink, max_retries=4, retry_base_delay=2.0, sleep=sleep)
        sleep.batcher = batcher
        for row in (2, 3, 4):
            await batcher.add(outcome(row))
        await batcher.flush()
        return batcher

    batcher = asyncio.run(run())

    assert sleep.delays == [2.0, 4.0, 8.0]
    assert sleep.buffered == [3, 3, 3]
    assert len(sink.calls) == 4
    assert all(rows == [2, 3, 4] for _, rows in sink.calls)
    assert sink.writes == [('sheet-a', [2, 3, 4])]
    assert batcher.total_buffered == 0


def test_exhausted_rate_limit_drops_batch_to_dead_letter(store):
    sink = FakeSink(always=quota_error())
    sleep = SleepRecorder()
    dead_letter = JobQueue('dead-letter', store)

    async def run():
        batcher = SinkBatcher(sink, max_retries=3, retry_base_delay=2.0, sleep=sleep, dead_letter=dead_letter)
        sleep.batcher = batcher
        await batcher.add(outcome(2))
        await batcher.add(outcome(3))
        written = await batcher.flush()
        return batcher, written

    batcher, written = asyncio.run(run())

    assert written == 0
    assert sleep.delays == [2.0, 4.0]
    assert len(sink.calls) == 3
    assert batcher.total_buffered == 0
    assert batcher.dropped_count == 2
    assert dead_letter.get_counts()['waiting'] == 2
    job = dead_letter.claim('inspector')
    assert job.data['destinationId'] == 'sheet-a'
    assert 'rate limit' in job.data['reason']


def test_permanent_error_drops_without_retry():
    sink = FakeSink(errors=[SinkError('403 caller does not have permission')])
    sleep = SleepRecorder()

    async def run():
        batcher = SinkBatcher(sink, sleep=sleep)
        sleep.batcher = batcher
        await batcher.add(outcome(2))
        await batcher.flush()
        return batcher

    batcher = asyncio.run(run())

    assert sleep.delays == []
    assert len(sink.calls) == 1
    assert batcher.total_buffered == 0
    assert batcher.dropped_count == 1


def test_outcomes_added_during_flush_wait_for_next_flush():
    sink = FakeSink()
    sink.release = threading.Event()

    async def run():
        batcher = SinkBatcher(sink, buffer_size=100)
        await batcher.add(outcome(2))
        flushing = asyncio.create_task(batcher.flush())
        while not sink.entered.is_set():
            await asyncio.sleep(0.01)

        await batcher.add(outcome(3))
        sink.release.set()
        await flushing
        return batcher

    batcher = asyncio.run(run())

    assert sink.writes == [('sheet-a', [2])]
    assert [o.row_index for o in batcher.buffer['sheet-a']] == [3]


def test_close_flushes_remaining_outcomes():
    sink = FakeSink()

    async def run():
        batcher = SinkBatcher(sink, buffer_size=50, flush_interval=60)
        batcher.start()
        for row in (2, 3, 4):
            await batcher.add(outcome(row))
        await batcher.close()
        return batcher

    batcher = asyncio.run(run())

    assert sink.writes == [('sheet-a', [2, 3, 4])]
    assert batcher.total_buffered == 0


@pytest.mark.parametrize('size', [1, 3])
def test_small_thresholds_flush_every_batch(size):
    sink = FakeSink()

    async def run():
        batcher = SinkBatcher(sink, buffer_size=size)
        for row in range(2, 2 + size * 2):
            await batcher.add(outcome(row))

    asyncio.run(run())

    assert len(sink.writes) == 2


def test_close_waits_for_timed_flush_cut_loose_from_the_timer(caplog):
    sink = FakeSink()
    calls = []

    async def run():
        batcher = SinkBatcher(sink, flush_interval=0.01)

        async def flush():
            calls.append(batcher.total_buffered)
            if len(calls) == 1:
                await asyncio.sleep(0.05)
                raise RuntimeError('sheet vanished')
            return 0

        batcher.flush = flush
        batcher.start()
        await batcher.add(outcome(2))
        while not calls:
            await asyncio.sleep(0.005)

        # cancels the timer while its shielded flush is still running
        await batcher.close()
        return batcher

    batcher = asyncio.run(run())

    assert len(calls) == 2
    assert batcher._timed_flush.done()
    assert 'Timed flush failed: sheet vanished' in caplog.text
