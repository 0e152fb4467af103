"""Unit tests for dealerdocs.engine.timers — keyed deferred actions."""

import asyncio

import pytest

from dealerdocs.engine.timers import DeferredActions, utcnow


class TestDeferredActions:

    @pytest.mark.asyncio
    async def test_fires_after_delay(self):
        timers = DeferredActions()
        fired = []
        timers.call_later(10, "k", lambda: fired.append("k"))
        assert timers.is_pending("k")
        await asyncio.sleep(0.05)
        assert fired == ["k"]
        assert not timers.is_pending("k")

    @pytest.mark.asyncio
    async def test_same_key_replaces(self):
        timers = DeferredActions()
        fired = []
        timers.call_later(10, "k", lambda: fired.append(1))
        timers.call_later(10, "k", lambda: fired.append(2))
        await asyncio.sleep(0.05)
        assert fired == [2]

    @pytest.mark.asyncio
    async def test_cancel(self):
        timers = DeferredActions()
        fired = []
        timers.call_later(10, "k", lambda: fired.append(1))
        assert timers.cancel("k") is True
        assert timers.cancel("k") is False
        await asyncio.sleep(0.05)
        assert fired == []

    @pytest.mark.asyncio
    async def test_flush_runs_pending_now(self):
        timers = DeferredActions()
        fired = []
        timers.call_later(10_000, "a", lambda: fired.append("a"))
        timers.call_later(10_000, "b", lambda: fired.append("b"))
        assert timers.flush() == 2
        assert sorted(fired) == ["a", "b"]
        assert timers.pending() == []

    @pytest.mark.asyncio
    async def test_failing_callback_is_contained(self):
        timers = DeferredActions()

        def boom():
            raise RuntimeError("nope")

        timers.call_later(0, "k", boom)
        timers.flush()
        assert timers.pending() == []

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        timers = DeferredActions()
        timers.call_later(10_000, "a", lambda: None)
        timers.cancel_all()
        assert timers.pending() == []


def test_utcnow_is_aware():
    assert utcnow().tzinfo is not None
