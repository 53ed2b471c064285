"""Reply monitoring and follow-up endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter

from outreach_engine.dependencies import EngineDep, PollerDep


router = APIRouter(prefix="/outreach")


@router.post("/check-replies")
async def check_replies(engine: EngineDep, poller: PollerDep) -> dict[str, Any]:
    """Poll the mailbox now and apply every new reply.

    Runs through the poller when one is active so its metrics reflect
    the manual check.
    """
    if poller is not None:
        report = await poller.check_now()
    else:
        report = await engine.check_replies_now()
    return report.to_dict()


@router.get("/monitor-status")
async def monitor_status(engine: EngineDep, poller: PollerDep) -> dict[str, Any]:
    """Operator-visible "last checked" signal."""
    status = engine.monitor_status
    interval = engine.settings.reply_check_interval_seconds
    return {
        **status.to_dict(),
        "stale": status.is_stale(engine.clock.now(), interval),
        "interval_seconds": interval,
        "poller_state": poller.state.value if poller else None,
        "poller": poller.metrics.to_dict() if poller else None,
    }


@router.post("/sweep")
async def sweep(engine: EngineDep, now: datetime | None = None) -> list[dict[str, Any]]:
    """Fire due follow-up events for every client in outreach."""
    return [r.to_dict() for r in await engine.sweep(now)]


@router.post("/poller/pause")
async def pause_poller(poller: PollerDep) -> dict[str, Any]:
    """Suspend timer-driven reply checks (session inactive)."""
    if poller is not None:
        await poller.pause()
    return {"state": poller.state.value if poller else None}


@router.post("/poller/resume")
async def resume_poller(poller: PollerDep) -> dict[str, Any]:
    """Resume timer-driven reply checks."""
    if poller is not None:
        await poller.resume()
    return {"state": poller.state.value if poller else None}
