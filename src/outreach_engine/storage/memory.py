"""In-memory ClientStore."""
from __future__ import annotations

import copy
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable

from outreach_engine.core.exceptions import ConcurrentModification, RecordNotFoundError
from outreach_engine.domain.models import (
    Client,
    OfferedSlot,
    OutreachAttempt,
    ReopenHistoryEntry,
    ScheduledAppointment,
    StatusHistoryEntry,
)
from outreach_engine.domain.status import ClientStatus


class InMemoryClientStore:
    """Dict-backed store for tests and single-process deployments."""

    def __init__(self) -> None:
        self._clients: dict[str, Client] = {}
        self._attempts: dict[str, OutreachAttempt] = {}
        self._reopen_history: dict[str, list[ReopenHistoryEntry]] = {}
        self._status_history: dict[str, list[StatusHistoryEntry]] = {}
        self._appointments: dict[str, list[ScheduledAppointment]] = {}
        self._slots: dict[str, OfferedSlot] = {}

    # ========================================================================
    # Clients
    # ========================================================================

    async def get_client(self, client_id: str) -> Client:
        client = self._clients.get(client_id)
        if client is None:
            raise RecordNotFoundError("Client not found", details={"client_id": client_id})
        return copy.deepcopy(client)

    async def save_client(self, client: Client, expected_version: int | None) -> Client:
        stored = self._clients.get(client.id)

        if expected_version is None:
            if stored is not None:
                raise ConcurrentModification(
                    "Client already exists",
                    details={"client_id": client.id, "version": stored.version},
                )
            new_version = 1
        else:
            current = stored.version if stored is not None else 0
            if current != expected_version:
                raise ConcurrentModification(
                    "Client was modified by another writer",
                    details={
                        "client_id": client.id,
                        "expected_version": expected_version,
                        "actual_version": current,
                    },
                )
            new_version = expected_version + 1

        saved = replace(
            copy.deepcopy(client),
            version=new_version,
            updated_at=datetime.now(timezone.utc),
        )
        self._clients[client.id] = saved
        return copy.deepcopy(saved)

    async def list_clients(self, statuses: Iterable[ClientStatus] | None = None) -> list[Client]:
        wanted = set(statuses) if statuses is not None else None
        return [
            copy.deepcopy(c)
            for c in self._clients.values()
            if wanted is None or c.status in wanted
        ]

    # ========================================================================
    # Attempts
    # ========================================================================

    async def get_attempts(self, client_id: str) -> list[OutreachAttempt]:
        attempts = [a for a in self._attempts.values() if a.client_id == client_id]
        return [copy.deepcopy(a) for a in sorted(attempts, key=lambda a: a.attempt_number)]

    async def get_attempt(self, attempt_id: str) -> OutreachAttempt:
        attempt = self._attempts.get(attempt_id)
        if attempt is None:
            raise RecordNotFoundError("Attempt not found", details={"attempt_id": attempt_id})
        return copy.deepcopy(attempt)

    async def save_attempt(self, attempt: OutreachAttempt) -> OutreachAttempt:
        for other in self._attempts.values():
            if (
                other.id != attempt.id
                and other.client_id == attempt.client_id
                and other.attempt_number == attempt.attempt_number
            ):
                raise ConcurrentModification(
                    "Attempt number already exists for client",
                    details={"client_id": attempt.client_id, "attempt_number": attempt.attempt_number},
                )
        self._attempts[attempt.id] = copy.deepcopy(attempt)
        return copy.deepcopy(attempt)

    # ========================================================================
    # History
    # ========================================================================

    async def append_reopen_entry(self, entry: ReopenHistoryEntry) -> None:
        self._reopen_history.setdefault(entry.client_id, []).append(entry)

    async def get_reopen_history(self, client_id: str) -> list[ReopenHistoryEntry]:
        return list(self._reopen_history.get(client_id, []))

    async def append_status_history(self, entry: StatusHistoryEntry) -> None:
        self._status_history.setdefault(entry.client_id, []).append(entry)

    async def get_status_history(self, client_id: str) -> list[StatusHistoryEntry]:
        return list(self._status_history.get(client_id, []))

    # ========================================================================
    # Scheduling
    # ========================================================================

    async def save_appointment(self, appointment: ScheduledAppointment) -> ScheduledAppointment:
        appointments = self._appointments.setdefault(appointment.client_id, [])
        appointments[:] = [a for a in appointments if a.id != appointment.id]
        appointments.append(copy.deepcopy(appointment))
        return copy.deepcopy(appointment)

    async def get_appointment(self, client_id: str) -> ScheduledAppointment | None:
        appointments = self._appointments.get(client_id)
        if not appointments:
            return None
        return copy.deepcopy(appointments[-1])

    async def save_offered_slot(self, slot: OfferedSlot) -> OfferedSlot:
        self._slots[slot.id] = copy.deepcopy(slot)
        return copy.deepcopy(slot)

    async def get_offered_slot(self, slot_id: str) -> OfferedSlot:
        slot = self._slots.get(slot_id)
        if slot is None:
            raise RecordNotFoundError("Offered slot not found", details={"slot_id": slot_id})
        return copy.deepcopy(slot)

    async def list_offered_slots(self, client_id: str, active_only: bool = True) -> list[OfferedSlot]:
        slots = [
            s for s in self._slots.values()
            if s.client_id == client_id and (s.is_active or not active_only)
        ]
        return [copy.deepcopy(s) for s in sorted(slots, key=lambda s: s.offered_at)]
