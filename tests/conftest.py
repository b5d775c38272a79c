import asyncio
import time

import pytest

from email_pipeline.memory_store import MemoryQueueStore


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryQueueStore(clock=clock)


@pytest.fixture
def drive():
    """Run a consumer until done() is true (or timeout), then close it"""

    async def _drive(consumer, done, timeout=5.0):
        runner = asyncio.create_task(consumer.run())
        deadline = time.monotonic() + timeout
        while not done() and time.monotonic() < deadline:
            await asyncio.sleep(0.01)
        await consumer.close()
        await runner

    return _drive
