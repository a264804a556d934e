"""Tests for the reconcile work queue."""

import asyncio

import pytest

from sentinel_rollout import WorkQueue


async def next_item(queue, timeout=0.05):
    return await asyncio.wait_for(queue.get(), timeout)


class TestWorkQueue:
    """Test queue semantics."""

    @pytest.mark.asyncio
    async def test_duplicates_are_collapsed(self):
        """Test that an item added twice is handed out once."""
        queue = WorkQueue()
        queue.add("a")
        queue.add("a")
        queue.add("b")

        assert len(queue) == 2
        assert await next_item(queue) == "a"
        assert await next_item(queue) == "b"
        with pytest.raises(asyncio.TimeoutError):
            await next_item(queue)

    @pytest.mark.asyncio
    async def test_item_is_not_processed_twice_at_once(self):
        """Test that re-adds during processing wait for done."""
        queue = WorkQueue()
        queue.add("a")
        item = await next_item(queue)

        queue.add("a")
        with pytest.raises(asyncio.TimeoutError):
            await next_item(queue)

        queue.done(item)
        assert await next_item(queue) == "a"

    @pytest.mark.asyncio
    async def test_add_after(self):
        """Test delayed adds."""
        queue = WorkQueue()
        queue.add_after("a", 0.02)

        with pytest.raises(asyncio.TimeoutError):
            await next_item(queue, timeout=0.005)
        assert await next_item(queue, timeout=1) == "a"

    @pytest.mark.asyncio
    async def test_earlier_deadline_wins(self):
        """Test that rescheduling keeps the earliest deadline."""
        queue = WorkQueue()
        queue.add_after("a", 10)
        queue.add_after("a", 0.01)

        assert await next_item(queue, timeout=1) == "a"

    @pytest.mark.asyncio
    async def test_failure_backoff(self):
        """Test exponential, capped backoff and forget."""
        queue = WorkQueue(base_delay=0.5, max_delay=2)

        delays = [queue.rate_limited_add("a") for _ in range(4)]

        assert delays == [0.5, 1.0, 2, 2]
        assert queue.num_requeues("a") == 4

        queue.forget("a")
        assert queue.num_requeues("a") == 0
        queue.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_releases_workers(self):
        """Test that every waiting worker gets None."""
        queue = WorkQueue()
        workers = [asyncio.create_task(queue.get()) for _ in range(3)]
        await asyncio.sleep(0)

        queue.shutdown()

        assert await asyncio.wait_for(asyncio.gather(*workers), 1) == [None, None, None]
        assert queue.shutting_down
        queue.add("a")
        assert len(queue) == 0
