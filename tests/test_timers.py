"""Tests for cancellable follow-up timers."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from outreach_engine.core.calendar import FixedClock
from outreach_engine.lifecycle.timers import FollowUpTimers

NOW = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class TestFollowUpTimers:
    """Per-client scheduling."""

    @pytest.mark.asyncio
    async def test_fires_callback(self):
        fired = asyncio.Event()
        seen: list[str] = []

        async def callback(client_id: str) -> None:
            seen.append(client_id)
            fired.set()

        timers = FollowUpTimers(callback, FixedClock(NOW))
        timers.schedule("c1", NOW + timedelta(milliseconds=10))
        await asyncio.wait_for(fired.wait(), timeout=2)

        assert seen == ["c1"]
        assert not timers.pending("c1")
        assert len(timers) == 0

    @pytest.mark.asyncio
    async def test_cancel_prevents_callback(self):
        seen: list[str] = []

        async def callback(client_id: str) -> None:
            seen.append(client_id)

        timers = FollowUpTimers(callback, FixedClock(NOW))
        timers.schedule("c1", NOW + timedelta(milliseconds=50))
        assert timers.pending("c1")
        assert timers.due_at("c1") == NOW + timedelta(milliseconds=50)

        assert timers.cancel("c1") is True
        await asyncio.sleep(0.1)

        assert seen == []
        assert timers.cancel("c1") is False

    @pytest.mark.asyncio
    async def test_reschedule_replaces_pending_check(self):
        seen: list[str] = []

        async def callback(client_id: str) -> None:
            seen.append(client_id)

        timers = FollowUpTimers(callback, FixedClock(NOW))
        timers.schedule("c1", NOW + timedelta(hours=1))
        timers.schedule("c1", NOW + timedelta(milliseconds=10))
        await asyncio.sleep(0.1)

        assert seen == ["c1"]

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self):
        fired = asyncio.Event()

        async def callback(client_id: str) -> None:
            fired.set()
            raise RuntimeError("boom")

        timers = FollowUpTimers(callback, FixedClock(NOW))
        timers.schedule("c1", NOW)
        await asyncio.wait_for(fired.wait(), timeout=2)
        await asyncio.sleep(0)

        assert len(timers) == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        async def callback(client_id: str) -> None:
            pass

        timers = FollowUpTimers(callback, FixedClock(NOW))
        timers.schedule("c1", NOW + timedelta(hours=1))
        timers.schedule("c2", NOW + timedelta(hours=1))

        await timers.cancel_all()

        assert len(timers) == 0
        assert not timers.pending("c1")
