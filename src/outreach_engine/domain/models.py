"""Lifecycle records.

Plain dataclasses shared by the engine, the stores and the API. The
engine owns every mutation; callers receive copies.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from outreach_engine.domain.status import ClientStatus, ClosedWorkflow


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


class AttemptStatus(str, Enum):
    """Status of a single outreach attempt."""

    NOT_CREATED = "not_created"
    PENDING = "pending"
    SENT = "sent"


class AttemptType(str, Enum):
    """Email template suggested for an attempt."""

    INITIAL_OUTREACH = "initial_outreach"
    FOLLOW_UP_1 = "follow_up_1"
    FOLLOW_UP_2 = "follow_up_2"

    @classmethod
    def for_attempt(cls, attempt_number: int) -> "AttemptType":
        if attempt_number <= 1:
            return cls.INITIAL_OUTREACH
        if attempt_number == 2:
            return cls.FOLLOW_UP_1
        return cls.FOLLOW_UP_2


class Dueness(str, Enum):
    """Derived follow-up state of a client."""

    NOT_DUE = "not_due"
    DUE_TODAY = "due_today"
    OVERDUE = "overdue"
    NO_CONTACT_OK_CLOSE = "no_contact_ok_close"


class Weekday(str, Enum):
    """Appointment day names, Monday first (matches date.weekday())."""

    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @property
    def index(self) -> int:
        return list(Weekday).index(self)

    @classmethod
    def of(cls, day: date) -> "Weekday":
        return list(cls)[day.weekday()]

    @classmethod
    def parse(cls, value: "str | Weekday") -> "Weekday":
        if isinstance(value, Weekday):
            return value
        normalized = value.strip().capitalize()
        return cls(normalized)


class Recurrence(str, Enum):
    """Appointment recurrence pattern."""

    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"
    ONE_TIME = "one-time"


@dataclass
class Client:
    """Prospective client tracked through the outreach lifecycle."""

    name: str
    email: str
    id: str = field(default_factory=_new_id)
    phone: str | None = None

    status: ClientStatus = ClientStatus.NEW
    version: int = 0

    # Lifecycle milestones
    initial_outreach_date: datetime | None = None
    follow_up_1_date: datetime | None = None
    follow_up_2_date: datetime | None = None
    next_follow_up_due: date | None = None
    scheduled_date: datetime | None = None
    closed_date: datetime | None = None

    # Closure metadata
    closed_reason: str | None = None
    closed_from_workflow: ClosedWorkflow | None = None
    closed_from_status: ClientStatus | None = None

    # Referral metadata
    referral_email_sent_at: datetime | None = None
    referral_clinic_names: list[str] = field(default_factory=list)

    # Evaluation
    evaluation_notes: str | None = None
    flag_reason: str | None = None

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "status": self.status.value,
            "version": self.version,
            "initial_outreach_date": _iso(self.initial_outreach_date),
            "follow_up_1_date": _iso(self.follow_up_1_date),
            "follow_up_2_date": _iso(self.follow_up_2_date),
            "next_follow_up_due": _iso(self.next_follow_up_due),
            "scheduled_date": _iso(self.scheduled_date),
            "closed_date": _iso(self.closed_date),
            "closed_reason": self.closed_reason,
            "closed_from_workflow": self.closed_from_workflow.value if self.closed_from_workflow else None,
            "closed_from_status": self.closed_from_status.value if self.closed_from_status else None,
            "referral_email_sent_at": _iso(self.referral_email_sent_at),
            "referral_clinic_names": list(self.referral_clinic_names),
            "evaluation_notes": self.evaluation_notes,
            "flag_reason": self.flag_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class OutreachAttempt:
    """One numbered outreach email for a client."""

    client_id: str
    attempt_number: int
    id: str = field(default_factory=_new_id)
    status: AttemptStatus = AttemptStatus.PENDING

    sent_at: datetime | None = None
    response_window_end: datetime | None = None

    # Reply detection
    response_detected: bool = False
    response_detected_at: datetime | None = None
    response_message_id: str | None = None

    # Outbound message
    message_id: str | None = None
    thread_id: str | None = None
    email_subject: str | None = None

    created_at: datetime = field(default_factory=_utcnow)

    @property
    def attempt_type(self) -> AttemptType:
        return AttemptType.for_attempt(self.attempt_number)

    @property
    def is_sent(self) -> bool:
        return self.status == AttemptStatus.SENT

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "attempt_number": self.attempt_number,
            "attempt_type": self.attempt_type.value,
            "status": self.status.value,
            "sent_at": _iso(self.sent_at),
            "response_window_end": _iso(self.response_window_end),
            "response_detected": self.response_detected,
            "response_detected_at": _iso(self.response_detected_at),
            "response_message_id": self.response_message_id,
            "message_id": self.message_id,
            "thread_id": self.thread_id,
            "email_subject": self.email_subject,
        }


@dataclass(frozen=True)
class ReopenHistoryEntry:
    """Append-only record of a closed client being reopened."""

    client_id: str
    previous_status: ClientStatus
    new_status: ClientStatus
    reopen_reason: str
    reopened_by: str
    reopened_at: datetime

    # Closure metadata cleared by the reopen
    closed_date: datetime | None = None
    closed_reason: str | None = None
    closed_from_workflow: ClosedWorkflow | None = None

    id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "previous_status": self.previous_status.value,
            "new_status": self.new_status.value,
            "reopen_reason": self.reopen_reason,
            "reopened_by": self.reopened_by,
            "reopened_at": _iso(self.reopened_at),
            "closed_date": _iso(self.closed_date),
            "closed_reason": self.closed_reason,
            "closed_from_workflow": self.closed_from_workflow.value if self.closed_from_workflow else None,
        }


@dataclass(frozen=True)
class StatusHistoryEntry:
    """Audit record of one accepted transition."""

    client_id: str
    from_status: ClientStatus
    to_status: ClientStatus
    event: str
    at: datetime
    actor: str = "system"
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "event": self.event,
            "actor": self.actor,
            "at": _iso(self.at),
        }


@dataclass
class OfferedSlot:
    """Availability option communicated to the client."""

    client_id: str
    day: Weekday
    time: str
    clinicians: list[str] = field(default_factory=list)
    offered_at: datetime = field(default_factory=_utcnow)
    start_date: date | None = None
    is_active: bool = True
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "day": self.day.value,
            "time": self.time,
            "clinicians": list(self.clinicians),
            "offered_at": _iso(self.offered_at),
            "start_date": _iso(self.start_date),
            "is_active": self.is_active,
        }


@dataclass
class ScheduledAppointment:
    """Confirmed appointment. Creating one drives the client to scheduled."""

    client_id: str
    day: Weekday
    time: str
    clinician: str
    start_date: date
    recurrence: Recurrence
    communication_note: str | None = None
    from_offered_slot: bool = False
    offered_slot_id: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "day": self.day.value,
            "time": self.time,
            "clinician": self.clinician,
            "start_date": _iso(self.start_date),
            "recurrence": self.recurrence.value,
            "communication_note": self.communication_note,
            "from_offered_slot": self.from_offered_slot,
            "offered_slot_id": self.offered_slot_id,
            "created_at": _iso(self.created_at),
        }
