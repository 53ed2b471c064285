"""Persistence interfaces."""

from outreach_engine.storage.base import ClientStore
from outreach_engine.storage.memory import InMemoryClientStore

__all__ = ["ClientStore", "InMemoryClientStore"]
