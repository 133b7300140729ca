"""Tests for the debounced intake scheduler."""

import asyncio

import pytest

from ridemetrics.services.intake import IntakeScheduler


@pytest.mark.asyncio
class TestIntakeScheduler:
    async def test_releases_in_priority_order(self):
        intake = IntakeScheduler()
        intake.put("c", 3)
        intake.put("a", 1)
        intake.put("b", 2)
        intake.flush()
        assert await intake.get_incoming_debounced(10, 60, 50) == ["a", "b", "c"]
        assert intake.size == 0

    async def test_put_many_with_key(self):
        intake = IntakeScheduler()
        intake.put_many([{"ts": 5}, {"ts": 1}], key=lambda x: x["ts"])
        intake.flush()
        batch = await intake.get_incoming_debounced(10, 60, 50)
        assert [x["ts"] for x in batch] == [1, 5]

    async def test_flush_on_empty_queue_ends_intake(self):
        intake = IntakeScheduler()
        intake.flush()
        assert await intake.get_incoming_debounced(10, 60, 50) is None

    async def test_cancel_releases_nothing(self):
        intake = IntakeScheduler()
        intake.put("a", 1)
        intake.cancel()
        assert await intake.get_incoming_debounced(10, 60, 50) is None
        assert intake.size == 1

    async def test_flush_clears_after_release(self):
        intake = IntakeScheduler()
        intake.put("a", 1)
        intake.flush()
        await intake.get_incoming_debounced(10, 60, 50)
        assert not intake.flush_event.is_set()

    async def test_quiet_queue_released_after_min_wait(self):
        intake = IntakeScheduler()
        intake.put("a", 1)
        loop = asyncio.get_running_loop()
        start = loop.time()
        batch = await intake.get_incoming_debounced(0.05, 5, 50)
        assert batch == ["a"]
        assert loop.time() - start < 1

    async def test_max_size_releases_immediately(self):
        intake = IntakeScheduler()

        async def producer():
            for i in range(10):
                intake.put(i, i)
                await asyncio.sleep(0)

        loop = asyncio.get_running_loop()
        start = loop.time()
        task = asyncio.ensure_future(producer())
        batch = await intake.get_incoming_debounced(5, 30, 10)
        await task
        assert len(batch) == 10
        assert loop.time() - start < 1

    async def test_max_wait_bounds_continuous_inserts(self):
        # Inserts arrive faster than min_wait forever; the deadline must still fire
        intake = IntakeScheduler()
        stop = asyncio.Event()

        async def producer():
            i = 0
            while not stop.is_set():
                intake.put(i, i)
                i += 1
                await asyncio.sleep(0.02)

        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(producer())
        start = loop.time()
        batch = await intake.get_incoming_debounced(0.1, 0.5, 1000)
        elapsed = loop.time() - start
        stop.set()
        await task
        assert batch
        assert 0.4 <= elapsed < 0.9

    async def test_debounce_waits_for_size_to_settle(self):
        intake = IntakeScheduler()

        async def producer():
            for i in range(5):
                intake.put(i, i)
                await asyncio.sleep(0.03)

        task = asyncio.ensure_future(producer())
        batch = await intake.get_incoming_debounced(0.1, 5, 100)
        await task
        assert batch == [0, 1, 2, 3, 4]

    async def test_cancel_while_waiting(self):
        intake = IntakeScheduler()
        intake.put("a", 1)

        async def cancel_soon():
            await asyncio.sleep(0.05)
            intake.cancel()

        task = asyncio.ensure_future(cancel_soon())
        assert await intake.get_incoming_debounced(10, 60, 50) is None
        await task
