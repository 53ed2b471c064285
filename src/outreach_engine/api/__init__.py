"""HTTP API routers."""

from outreach_engine.api import clients, health, outreach

__all__ = ["clients", "health", "outreach"]
