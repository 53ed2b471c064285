"""SQL-backed ClientStore.

Each call runs in its own transaction. Client writes are conditional
updates on the version column, so a lost update is detected even
across processes.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach_engine.core.exceptions import (
    ConcurrentModification,
    RecordNotFoundError,
    StorageUnavailableError,
    wrap_exception,
)
from outreach_engine.core.log_setup import get_logger
from outreach_engine.db.models import (
    AppointmentModel,
    ClientModel,
    OfferedSlotModel,
    OutreachAttemptModel,
    ReopenHistoryModel,
    StatusHistoryModel,
    client_columns,
)
from outreach_engine.domain.models import (
    Client,
    OfferedSlot,
    OutreachAttempt,
    ReopenHistoryEntry,
    ScheduledAppointment,
    StatusHistoryEntry,
)
from outreach_engine.domain.status import ClientStatus

log = get_logger(__name__)


class SqlClientStore:
    """ClientStore over SQLAlchemy async sessions.

    Usage:
        store = SqlClientStore(get_session_factory())
        client = await store.get_client(client_id)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise
            except (OperationalError, DBAPIError) as e:
                await session.rollback()
                log.error("Database error", error=str(e))
                raise wrap_exception(e, StorageUnavailableError, "Database unavailable") from e
            except Exception:
                await session.rollback()
                raise

    # ========================================================================
    # Clients
    # ========================================================================

    async def get_client(self, client_id: str) -> Client:
        async with self._session() as session:
            row = await session.get(ClientModel, client_id)
            if row is None:
                raise RecordNotFoundError("Client not found", details={"client_id": client_id})
            return row.to_domain()

    async def save_client(self, client: Client, expected_version: int | None) -> Client:
        now = datetime.now(timezone.utc)
        async with self._session() as session:
            if expected_version is None or expected_version == 0:
                existing = await session.get(ClientModel, client.id)
                if existing is not None:
                    raise ConcurrentModification(
                        "Client already exists",
                        details={"client_id": client.id, "version": existing.version},
                    )
                row = ClientModel(
                    id=client.id,
                    version=1,
                    created_at=client.created_at,
                    updated_at=now,
                )
                row.apply(client)
                session.add(row)
                await session.flush()
                return row.to_domain()

            stmt = (
                update(ClientModel)
                .where(ClientModel.id == client.id, ClientModel.version == expected_version)
                .values(**client_columns(client), version=expected_version + 1, updated_at=now)
            )
            result = await session.execute(stmt)
            if result.rowcount != 1:
                current = await session.scalar(
                    select(ClientModel.version).where(ClientModel.id == client.id)
                )
                if current is None:
                    raise RecordNotFoundError("Client not found", details={"client_id": client.id})
                raise ConcurrentModification(
                    "Client was modified by another writer",
                    details={
                        "client_id": client.id,
                        "expected_version": expected_version,
                        "actual_version": current,
                    },
                )

            row = await session.get(ClientModel, client.id, populate_existing=True)
            return row.to_domain()

    async def list_clients(self, statuses: Iterable[ClientStatus] | None = None) -> list[Client]:
        async with self._session() as session:
            stmt = select(ClientModel).order_by(ClientModel.created_at)
            if statuses is not None:
                stmt = stmt.where(ClientModel.status.in_([s.value for s in statuses]))
            rows = (await session.scalars(stmt)).all()
            return [row.to_domain() for row in rows]

    # ========================================================================
    # Attempts
    # ========================================================================

    async def get_attempts(self, client_id: str) -> list[OutreachAttempt]:
        async with self._session() as session:
            stmt = (
                select(OutreachAttemptModel)
                .where(OutreachAttemptModel.client_id == client_id)
                .order_by(OutreachAttemptModel.attempt_number)
            )
            return [row.to_domain() for row in (await session.scalars(stmt)).all()]

    async def get_attempt(self, attempt_id: str) -> OutreachAttempt:
        async with self._session() as session:
            row = await session.get(OutreachAttemptModel, attempt_id)
            if row is None:
                raise RecordNotFoundError("Attempt not found", details={"attempt_id": attempt_id})
            return row.to_domain()

    async def save_attempt(self, attempt: OutreachAttempt) -> OutreachAttempt:
        try:
            async with self._session() as session:
                row = await session.get(OutreachAttemptModel, attempt.id)
                if row is None:
                    row = OutreachAttemptModel(id=attempt.id)
                    session.add(row)
                row.apply(attempt)
                await session.flush()
                return row.to_domain()
        except IntegrityError as e:
            raise ConcurrentModification(
                "Attempt number already exists for client",
                details={"client_id": attempt.client_id, "attempt_number": attempt.attempt_number},
                cause=e,
            ) from e

    # ========================================================================
    # History
    # ========================================================================

    async def append_reopen_entry(self, entry: ReopenHistoryEntry) -> None:
        async with self._session() as session:
            session.add(ReopenHistoryModel.from_domain(entry))

    async def get_reopen_history(self, client_id: str) -> list[ReopenHistoryEntry]:
        async with self._session() as session:
            stmt = (
                select(ReopenHistoryModel)
                .where(ReopenHistoryModel.client_id == client_id)
                .order_by(ReopenHistoryModel.reopened_at)
            )
            return [row.to_domain() for row in (await session.scalars(stmt)).all()]

    async def append_status_history(self, entry: StatusHistoryEntry) -> None:
        async with self._session() as session:
            session.add(StatusHistoryModel.from_domain(entry))

    async def get_status_history(self, client_id: str) -> list[StatusHistoryEntry]:
        async with self._session() as session:
            stmt = (
                select(StatusHistoryModel)
                .where(StatusHistoryModel.client_id == client_id)
                .order_by(StatusHistoryModel.at)
            )
            return [row.to_domain() for row in (await session.scalars(stmt)).all()]

    # ========================================================================
    # Scheduling
    # ========================================================================

    async def save_appointment(self, appointment: ScheduledAppointment) -> ScheduledAppointment:
        async with self._session() as session:
            row = await session.get(AppointmentModel, appointment.id)
            if row is None:
                row = AppointmentModel(id=appointment.id)
                session.add(row)
            row.apply(appointment)
            await session.flush()
            return row.to_domain()

    async def get_appointment(self, client_id: str) -> ScheduledAppointment | None:
        async with self._session() as session:
            stmt = (
                select(AppointmentModel)
                .where(AppointmentModel.client_id == client_id)
                .order_by(AppointmentModel.created_at.desc())
                .limit(1)
            )
            row = await session.scalar(stmt)
            return row.to_domain() if row else None

    async def save_offered_slot(self, slot: OfferedSlot) -> OfferedSlot:
        async with self._session() as session:
            row = await session.get(OfferedSlotModel, slot.id)
            if row is None:
                row = OfferedSlotModel(id=slot.id)
                session.add(row)
            row.apply(slot)
            await session.flush()
            return row.to_domain()

    async def get_offered_slot(self, slot_id: str) -> OfferedSlot:
        async with self._session() as session:
            row = await session.get(OfferedSlotModel, slot_id)
            if row is None:
                raise RecordNotFoundError("Offered slot not found", details={"slot_id": slot_id})
            return row.to_domain()

    async def list_offered_slots(self, client_id: str, active_only: bool = True) -> list[OfferedSlot]:
        async with self._session() as session:
            stmt = (
                select(OfferedSlotModel)
                .where(OfferedSlotModel.client_id == client_id)
                .order_by(OfferedSlotModel.offered_at)
            )
            if active_only:
                stmt = stmt.where(OfferedSlotModel.is_active.is_(True))
            return [row.to_domain() for row in (await session.scalars(stmt)).all()]
