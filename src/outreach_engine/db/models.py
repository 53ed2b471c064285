"""Lifecycle ORM Models.

Contains:
- Client: prospective client with optimistic version column
- OutreachAttempt: numbered outreach emails, unique per client
- StatusHistory / ReopenHistory: append-only audit rows
- OfferedSlot / Appointment: scheduling records
"""
from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from outreach_engine.db.base import Base, IdMixin, TimestampMixin, UTCDateTime
from outreach_engine.domain.models import (
    AttemptStatus,
    Client,
    OfferedSlot,
    OutreachAttempt,
    Recurrence,
    ReopenHistoryEntry,
    ScheduledAppointment,
    StatusHistoryEntry,
    Weekday,
)
from outreach_engine.domain.status import ClientStatus, ClosedWorkflow, parse_status


class ClientModel(Base, IdMixin, TimestampMixin):
    """Client ORM model."""

    __tablename__ = "clients"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Lifecycle milestones
    initial_outreach_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    follow_up_1_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    follow_up_2_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_follow_up_due: Mapped[date | None] = mapped_column(Date, nullable=True)
    scheduled_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    closed_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Closure
    closed_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    closed_from_workflow: Mapped[str | None] = mapped_column(String(50), nullable=True)
    closed_from_status: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Referral
    referral_email_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    referral_clinic_names: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    # Evaluation
    evaluation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    flag_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_domain(self) -> Client:
        return Client(
            id=self.id,
            name=self.name,
            email=self.email,
            phone=self.phone,
            status=parse_status(self.status).status,
            version=self.version,
            initial_outreach_date=self.initial_outreach_date,
            follow_up_1_date=self.follow_up_1_date,
            follow_up_2_date=self.follow_up_2_date,
            next_follow_up_due=self.next_follow_up_due,
            scheduled_date=self.scheduled_date,
            closed_date=self.closed_date,
            closed_reason=self.closed_reason,
            closed_from_workflow=ClosedWorkflow(self.closed_from_workflow) if self.closed_from_workflow else None,
            closed_from_status=parse_status(self.closed_from_status).status if self.closed_from_status else None,
            referral_email_sent_at=self.referral_email_sent_at,
            referral_clinic_names=list(self.referral_clinic_names or []),
            evaluation_notes=self.evaluation_notes,
            flag_reason=self.flag_reason,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def apply(self, client: Client) -> None:
        """Copy mutable domain fields onto the row (version excluded)."""
        for key, value in client_columns(client).items():
            setattr(self, key, value)


class OutreachAttemptModel(Base, IdMixin):
    """Outreach attempt ORM model."""

    __tablename__ = "outreach_attempts"
    __table_args__ = (
        UniqueConstraint("client_id", "attempt_number", name="uq_attempt_client_number"),
    )

    client_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AttemptStatus.PENDING.value)

    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    response_window_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    response_detected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    response_detected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    response_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    thread_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_subject: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_domain(self) -> OutreachAttempt:
        return OutreachAttempt(
            id=self.id,
            client_id=self.client_id,
            attempt_number=self.attempt_number,
            status=AttemptStatus(self.status),
            sent_at=self.sent_at,
            response_window_end=self.response_window_end,
            response_detected=self.response_detected,
            response_detected_at=self.response_detected_at,
            response_message_id=self.response_message_id,
            message_id=self.message_id,
            thread_id=self.thread_id,
            email_subject=self.email_subject,
            created_at=self.created_at,
        )

    def apply(self, attempt: OutreachAttempt) -> None:
        self.client_id = attempt.client_id
        self.attempt_number = attempt.attempt_number
        self.status = attempt.status.value
        self.sent_at = attempt.sent_at
        self.response_window_end = attempt.response_window_end
        self.response_detected = attempt.response_detected
        self.response_detected_at = attempt.response_detected_at
        self.response_message_id = attempt.response_message_id
        self.message_id = attempt.message_id
        self.thread_id = attempt.thread_id
        self.email_subject = attempt.email_subject
        self.created_at = attempt.created_at


class StatusHistoryModel(Base, IdMixin):
    """Accepted transition audit row."""

    __tablename__ = "status_history"
    __table_args__ = (Index("ix_status_history_client_at", "client_id", "at"),)

    client_id: Mapped[str] = mapped_column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    from_status: Mapped[str] = mapped_column(String(50), nullable=False)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    event: Mapped[str] = mapped_column(String(100), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    @classmethod
    def from_domain(cls, entry: StatusHistoryEntry) -> "StatusHistoryModel":
        return cls(
            id=entry.id,
            client_id=entry.client_id,
            from_status=entry.from_status.value,
            to_status=entry.to_status.value,
            event=entry.event,
            actor=entry.actor,
            at=entry.at,
        )

    def to_domain(self) -> StatusHistoryEntry:
        return StatusHistoryEntry(
            id=self.id,
            client_id=self.client_id,
            from_status=ClientStatus(self.from_status),
            to_status=ClientStatus(self.to_status),
            event=self.event,
            actor=self.actor,
            at=self.at,
        )


class ReopenHistoryModel(Base, IdMixin):
    """Reopen audit row with the closure snapshot it cleared."""

    __tablename__ = "reopen_history"
    __table_args__ = (Index("ix_reopen_history_client_at", "client_id", "reopened_at"),)

    client_id: Mapped[str] = mapped_column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    previous_status: Mapped[str] = mapped_column(String(50), nullable=False)
    new_status: Mapped[str] = mapped_column(String(50), nullable=False)
    reopen_reason: Mapped[str] = mapped_column(Text, nullable=False)
    reopened_by: Mapped[str] = mapped_column(String(255), nullable=False)
    reopened_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    closed_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    closed_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    closed_from_workflow: Mapped[str | None] = mapped_column(String(50), nullable=True)

    @classmethod
    def from_domain(cls, entry: ReopenHistoryEntry) -> "ReopenHistoryModel":
        return cls(
            id=entry.id,
            client_id=entry.client_id,
            previous_status=entry.previous_status.value,
            new_status=entry.new_status.value,
            reopen_reason=entry.reopen_reason,
            reopened_by=entry.reopened_by,
            reopened_at=entry.reopened_at,
            closed_date=entry.closed_date,
            closed_reason=entry.closed_reason,
            closed_from_workflow=entry.closed_from_workflow.value if entry.closed_from_workflow else None,
        )

    def to_domain(self) -> ReopenHistoryEntry:
        return ReopenHistoryEntry(
            id=self.id,
            client_id=self.client_id,
            previous_status=ClientStatus(self.previous_status),
            new_status=ClientStatus(self.new_status),
            reopen_reason=self.reopen_reason,
            reopened_by=self.reopened_by,
            reopened_at=self.reopened_at,
            closed_date=self.closed_date,
            closed_reason=self.closed_reason,
            closed_from_workflow=ClosedWorkflow(self.closed_from_workflow) if self.closed_from_workflow else None,
        )


class OfferedSlotModel(Base, IdMixin):
    """Availability offered to a client."""

    __tablename__ = "offered_slots"

    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day: Mapped[str] = mapped_column(String(10), nullable=False)
    time: Mapped[str] = mapped_column(String(20), nullable=False)
    clinicians: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    offered_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_domain(self) -> OfferedSlot:
        return OfferedSlot(
            id=self.id,
            client_id=self.client_id,
            day=Weekday(self.day),
            time=self.time,
            clinicians=list(self.clinicians or []),
            offered_at=self.offered_at,
            start_date=self.start_date,
            is_active=self.is_active,
        )

    def apply(self, slot: OfferedSlot) -> None:
        self.client_id = slot.client_id
        self.day = slot.day.value
        self.time = slot.time
        self.clinicians = list(slot.clinicians)
        self.offered_at = slot.offered_at
        self.start_date = slot.start_date
        self.is_active = slot.is_active


class AppointmentModel(Base, IdMixin):
    """Confirmed appointment."""

    __tablename__ = "appointments"

    client_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day: Mapped[str] = mapped_column(String(10), nullable=False)
    time: Mapped[str] = mapped_column(String(20), nullable=False)
    clinician: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    recurrence: Mapped[str] = mapped_column(String(20), nullable=False)
    communication_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    from_offered_slot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offered_slot_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_domain(self) -> ScheduledAppointment:
        return ScheduledAppointment(
            id=self.id,
            client_id=self.client_id,
            day=Weekday(self.day),
            time=self.time,
            clinician=self.clinician,
            start_date=self.start_date,
            recurrence=Recurrence(self.recurrence),
            communication_note=self.communication_note,
            from_offered_slot=self.from_offered_slot,
            offered_slot_id=self.offered_slot_id,
            created_at=self.created_at,
        )

    def apply(self, appointment: ScheduledAppointment) -> None:
        self.client_id = appointment.client_id
        self.day = appointment.day.value
        self.time = appointment.time
        self.clinician = appointment.clinician
        self.start_date = appointment.start_date
        self.recurrence = appointment.recurrence.value
        self.communication_note = appointment.communication_note
        self.from_offered_slot = appointment.from_offered_slot
        self.offered_slot_id = appointment.offered_slot_id
        self.created_at = appointment.created_at


def client_columns(client: Client) -> dict[str, object]:
    """Column values for a client row, excluding id and version."""
    return {
        "name": client.name,
        "email": client.email,
        "phone": client.phone,
        "status": client.status.value,
        "initial_outreach_date": client.initial_outreach_date,
        "follow_up_1_date": client.follow_up_1_date,
        "follow_up_2_date": client.follow_up_2_date,
        "next_follow_up_due": client.next_follow_up_due,
        "scheduled_date": client.scheduled_date,
        "closed_date": client.closed_date,
        "closed_reason": client.closed_reason,
        "closed_from_workflow": client.closed_from_workflow.value if client.closed_from_workflow else None,
        "closed_from_status": client.closed_from_status.value if client.closed_from_status else None,
        "referral_email_sent_at": client.referral_email_sent_at,
        "referral_clinic_names": list(client.referral_clinic_names),
        "evaluation_notes": client.evaluation_notes,
        "flag_reason": client.flag_reason,
    }
