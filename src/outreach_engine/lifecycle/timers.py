"""Cancellable per-client follow-up checks."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable

from outreach_engine.core.calendar import Clock, SystemClock
from outreach_engine.core.log_setup import get_logger

log = get_logger(__name__)

TimerCallback = Callable[[str], Awaitable[object]]


class FollowUpTimers:
    """One pending check per client.

    Scheduling a client again replaces its pending check. The callback
    runs with the client id and must re-validate state itself; a check
    that slips past a cancel sees the closed client and does nothing.
    """

    def __init__(self, callback: TimerCallback, clock: Clock | None = None) -> None:
        self._callback = callback
        self._clock = clock or SystemClock()
        self._tasks: dict[str, asyncio.Task] = {}
        self._due: dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def pending(self, client_id: str) -> bool:
        task = self._tasks.get(client_id)
        return task is not None and not task.done()

    def due_at(self, client_id: str) -> datetime | None:
        return self._due.get(client_id)

    def schedule(self, client_id: str, at: datetime) -> None:
        """Run the check for ``client_id`` at ``at``."""
        self.cancel(client_id)
        delay = max(0.0, (at - self._clock.now()).total_seconds())
        self._due[client_id] = at
        self._tasks[client_id] = asyncio.create_task(
            self._fire(client_id, delay), name=f"follow-up-{client_id}"
        )
        log.debug("Follow-up check scheduled", client_id=client_id, due_at=at.isoformat())

    def cancel(self, client_id: str) -> bool:
        """Cancel the pending check. Returns True if one was pending."""
        self._due.pop(client_id, None)
        task = self._tasks.pop(client_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        log.debug("Follow-up check cancelled", client_id=client_id)
        return True

    async def cancel_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._due.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _fire(self, client_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        current = asyncio.current_task()
        if self._tasks.get(client_id) is current:
            del self._tasks[client_id]
            self._due.pop(client_id, None)
        try:
            await self._callback(client_id)
        except Exception as e:
            log.error("Follow-up check failed", client_id=client_id, error=str(e))
