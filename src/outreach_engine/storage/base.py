"""Persistence collaborator interface.

Every record type is addressed by id. Clients carry an integer
``version`` for optimistic concurrency: ``save_client`` with a stale
``expected_version`` raises ``ConcurrentModification`` and writes
nothing. Pass ``expected_version=None`` to insert a new client.
"""
from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable

from outreach_engine.domain.models import (
    Client,
    OfferedSlot,
    OutreachAttempt,
    ReopenHistoryEntry,
    ScheduledAppointment,
    StatusHistoryEntry,
)
from outreach_engine.domain.status import ClientStatus


@runtime_checkable
class ClientStore(Protocol):
    """Load/save lifecycle records.

    Implementations return copies; mutating a returned object never
    changes stored state until it is saved.
    """

    async def get_client(self, client_id: str) -> Client:
        """Raises RecordNotFoundError if missing."""
        ...

    async def save_client(self, client: Client, expected_version: int | None) -> Client:
        """Insert or update; returns the stored copy with its new version."""
        ...

    async def list_clients(self, statuses: Iterable[ClientStatus] | None = None) -> list[Client]:
        ...

    async def get_attempts(self, client_id: str) -> list[OutreachAttempt]:
        """Attempts ordered by attempt number."""
        ...

    async def get_attempt(self, attempt_id: str) -> OutreachAttempt:
        """Raises RecordNotFoundError if missing."""
        ...

    async def save_attempt(self, attempt: OutreachAttempt) -> OutreachAttempt:
        ...

    async def append_reopen_entry(self, entry: ReopenHistoryEntry) -> None:
        ...

    async def get_reopen_history(self, client_id: str) -> list[ReopenHistoryEntry]:
        ...

    async def append_status_history(self, entry: StatusHistoryEntry) -> None:
        ...

    async def get_status_history(self, client_id: str) -> list[StatusHistoryEntry]:
        ...

    async def save_appointment(self, appointment: ScheduledAppointment) -> ScheduledAppointment:
        ...

    async def get_appointment(self, client_id: str) -> ScheduledAppointment | None:
        """Most recent appointment for the client, if any."""
        ...

    async def save_offered_slot(self, slot: OfferedSlot) -> OfferedSlot:
        ...

    async def get_offered_slot(self, slot_id: str) -> OfferedSlot:
        """Raises RecordNotFoundError if missing."""
        ...

    async def list_offered_slots(self, client_id: str, active_only: bool = True) -> list[OfferedSlot]:
        ...
