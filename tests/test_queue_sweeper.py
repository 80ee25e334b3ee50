"""
Tests for feedwatch/workers/queue_sweeper.py - in-process reset/cleanup loop.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from feedwatch.workers.queue_sweeper import (
    WORKER_NAME,
    _heartbeat,
    heartbeat_key,
    run_queue_sweeper,
    sweep_once,
)

VERDICT = {"relevant": False, "reasoning": "off topic", "confidence": 0.8}


class TestSweepOnce:
    async def test_resets_and_cleans(self, queue, sample_posts, clock):
        await queue.enqueue(sample_posts[:2], "slack")
        done = await queue.claim_next("w1")
        await queue.submit_result(done.key, VERDICT, "w1")
        await queue.claim_next("w2")
        clock.advance(hours=2)

        counts = await sweep_once(queue, stuck_timeout_ms=300000, cleanup_max_age_ms=3600000)

        assert counts == {"reset": 1, "cleaned": 1}
        assert await queue.store.get(done.key) is None

    async def test_nothing_to_do(self, queue):
        assert await sweep_once(queue, 300000, 3600000) == {"reset": 0, "cleaned": 0}


class TestHeartbeat:
    async def test_writes_timestamp(self, store):
        await _heartbeat(store)
        assert await store.get(heartbeat_key(WORKER_NAME)) is not None

    async def test_store_failure_is_swallowed(self):
        broken = MagicMock()
        broken.set = AsyncMock(side_effect=OSError("disk full"))
        await _heartbeat(broken)


class TestRunLoop:
    async def test_error_in_cycle_does_not_stop_loop(self, store, test_settings):
        failing_queue = MagicMock()
        failing_queue.store = store
        failing_queue.reset_stuck = AsyncMock(side_effect=RuntimeError("store down"))

        sleep_calls = []

        async def fake_sleep(seconds):
            sleep_calls.append(seconds)
            if len(sleep_calls) >= 2:
                raise asyncio.CancelledError()

        with (
            patch("feedwatch.workers.queue_sweeper.get_settings", return_value=test_settings),
            patch("feedwatch.services.filter_queue.get_filter_queue", return_value=failing_queue),
            patch("feedwatch.workers.queue_sweeper.asyncio.sleep", side_effect=fake_sleep),
        ):
            with pytest.raises(asyncio.CancelledError):
                await run_queue_sweeper()

        assert failing_queue.reset_stuck.await_count == 2
        assert sleep_calls == [test_settings.queue_sweep_interval_seconds] * 2
        assert await store.get(heartbeat_key(WORKER_NAME)) is not None
