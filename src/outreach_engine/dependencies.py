"""Dependency Injection for the Outreach Engine API.

The engine and the reply poller live on ``app.state`` and are created by
the application lifespan (or injected by tests through ``create_app``).

Usage:
    from outreach_engine.dependencies import EngineDep

    @router.get("/endpoint")
    async def handler(engine: EngineDep):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from outreach_engine.config import Settings, get_settings
from outreach_engine.core.exceptions import ConfigurationError
from outreach_engine.lifecycle.engine import OutreachEngine
from outreach_engine.lifecycle.poller import ReplyPoller


# =============================================================================
# Settings Dependency
# =============================================================================


def get_app_settings() -> Settings:
    """Get application settings.

    Returns cached settings instance.
    """
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


# =============================================================================
# Engine Dependencies
# =============================================================================


def get_engine(request: Request) -> OutreachEngine:
    """Get the engine attached to the running application."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ConfigurationError("Outreach engine is not initialized")
    return engine


def get_poller(request: Request) -> ReplyPoller | None:
    """Get the reply poller, if one is running."""
    return getattr(request.app.state, "poller", None)


EngineDep = Annotated[OutreachEngine, Depends(get_engine)]
PollerDep = Annotated[ReplyPoller | None, Depends(get_poller)]
