"""Health check endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from outreach_engine import __version__
from outreach_engine.dependencies import EngineDep, PollerDep, SettingsDep


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    instance_id: str
    environment: str
    checks: dict[str, Any]


@router.get("/health")
async def health_check(
    settings: SettingsDep, engine: EngineDep, poller: PollerDep
) -> HealthResponse:
    """Perform health check.

    Components checked:
    - API: Always ok if reachable
    - Reply monitor: stale when no successful check in two intervals
    - Poller: running, paused or disabled
    """
    now = engine.clock.now()
    checks: dict[str, Any] = {"api": "ok"}

    if engine.monitor is None:
        checks["reply_monitor"] = "not_configured"
    elif engine.monitor_status.is_stale(now, engine.settings.reply_check_interval_seconds):
        checks["reply_monitor"] = "stale"
    else:
        checks["reply_monitor"] = "ok"

    checks["poller"] = poller.state.value if poller else "disabled"

    status = "degraded" if checks["reply_monitor"] == "stale" else "healthy"
    return HealthResponse(
        status=status,
        timestamp=now.isoformat(),
        version=__version__,
        instance_id=settings.instance_id,
        environment=settings.environment,
        checks=checks,
    )


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Check if the service is alive."""
    return {"status": "alive"}
