"""Reply Poller Service.

Background task that runs reply checks (and optionally the follow-up
sweep) on the configured interval.

Features:
- Configurable polling interval
- Pause/resume for an inactive session
- On-demand "check now"
- Backoff after failed ticks
- Graceful shutdown
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

from outreach_engine.core.log_setup import get_logger
from outreach_engine.core.retry import tick_backoff
from outreach_engine.lifecycle.replies import ReplyCheckReport

log = get_logger(__name__)


class PollerState(str, Enum):
    """Poller states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"


@dataclass
class PollerMetrics:
    """Poller counters."""

    started_at: datetime | None = None
    ticks: int = 0
    replies_detected: int = 0
    failed_ticks: int = 0
    consecutive_failures: int = 0
    last_tick_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ticks": self.ticks,
            "replies_detected": self.replies_detected,
            "failed_ticks": self.failed_ticks,
            "consecutive_failures": self.consecutive_failures,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_error": self.last_error,
        }


CheckFn = Callable[[], Awaitable[ReplyCheckReport]]
SweepFn = Callable[[], Awaitable[Any]]


class ReplyPoller:
    """Run reply checks on an interval.

    Usage:
        poller = ReplyPoller(engine.check_replies_now, interval_seconds=300)

        # In application lifespan
        await poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        check: CheckFn,
        interval_seconds: float,
        sweep: SweepFn | None = None,
    ) -> None:
        """Initialize poller.

        Args:
            check: Coroutine function running one reply check
            interval_seconds: Delay between ticks
            sweep: Optional follow-up sweep run after each check
        """
        self._check = check
        self._sweep = sweep
        self.interval_seconds = interval_seconds

        self._state = PollerState.STOPPED
        self._task: asyncio.Task | None = None
        self._metrics = PollerMetrics()
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def metrics(self) -> PollerMetrics:
        return self._metrics

    @property
    def is_running(self) -> bool:
        return self._state == PollerState.RUNNING

    async def start(self) -> None:
        """Start the background task."""
        if self._state != PollerState.STOPPED:
            log.warning("Reply poller already active", state=self._state.value)
            return

        self._state = PollerState.STARTING
        self._stop_event.clear()
        self._wake_event.clear()
        self._metrics = PollerMetrics(started_at=datetime.now(timezone.utc))

        self._task = asyncio.create_task(self._run_loop())
        self._state = PollerState.RUNNING
        log.info("Reply poller started", interval_seconds=self.interval_seconds)

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop the poller, cancelling a tick that overruns ``timeout``."""
        if self._state == PollerState.STOPPED:
            return

        self._state = PollerState.STOPPING
        self._stop_event.set()
        self._wake_event.set()

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                log.warning("Reply poller stop timed out, cancelling task")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

        self._state = PollerState.STOPPED
        log.info("Reply poller stopped")

    async def pause(self) -> None:
        """Suspend timer-driven checks (session inactive)."""
        if self._state == PollerState.RUNNING:
            self._state = PollerState.PAUSED
            log.info("Reply poller paused")

    async def resume(self) -> None:
        """Resume timer-driven checks and poll right away."""
        if self._state == PollerState.PAUSED:
            self._state = PollerState.RUNNING
            self._wake_event.set()
            log.info("Reply poller resumed")

    async def check_now(self) -> ReplyCheckReport:
        """Run a check immediately, regardless of pause state."""
        return await self._tick(raise_errors=True)

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self._wake_event.clear()
            if self._state == PollerState.RUNNING:
                await self._tick()

            delay = tick_backoff(self._metrics.consecutive_failures, self.interval_seconds)
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass  # Normal timeout, next tick

    async def _tick(self, raise_errors: bool = False) -> ReplyCheckReport:
        self._metrics.ticks += 1
        self._metrics.last_tick_at = datetime.now(timezone.utc)

        try:
            report = await self._check()
            if self._sweep is not None:
                await self._sweep()
        except Exception as e:
            self._record_failure(f"{type(e).__name__}: {e}")
            log.error("Reply poll tick failed", error=str(e))
            if raise_errors:
                raise
            return ReplyCheckReport(
                checked_at=self._metrics.last_tick_at,
                errors=[{"error": str(e)}],
            )

        self._metrics.replies_detected += len(report.replies)
        if report.success:
            self._metrics.consecutive_failures = 0
            self._metrics.last_error = None
        else:
            self._record_failure(report.errors[-1].get("error", "unknown error"))
        return report

    def _record_failure(self, error: str) -> None:
        self._metrics.failed_ticks += 1
        self._metrics.consecutive_failures += 1
        self._metrics.last_error = error
