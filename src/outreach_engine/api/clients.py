"""Client lifecycle endpoints.

Every mutation goes through the engine facade, so the per-client
serialization and optimistic version checks apply to HTTP callers too.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from outreach_engine.core.exceptions import ValidationError
from outreach_engine.dependencies import EngineDep
from outreach_engine.domain.events import (
    AllAttemptsExhausted,
    AttemptSent,
    FollowUpDue,
    LifecycleEvent,
    ReplyDetected,
    StaffAction,
    StaffActionKind,
)
from outreach_engine.domain.models import Client, Recurrence
from outreach_engine.domain.status import ClientStatus, ClosedWorkflow
from outreach_engine.lifecycle.scheduling import ScheduleRequest


router = APIRouter(prefix="/clients")


# ============================================================================
# Pydantic Schemas
# ============================================================================

class ClientCreate(BaseModel):
    """Create client request."""

    name: str = Field(min_length=1)
    email: EmailStr
    phone: str | None = None


class TransitionRequest(BaseModel):
    """Lifecycle event request.

    ``event`` is one of attempt_sent, reply_detected, follow_up_due,
    all_attempts_exhausted, or a staff action kind.
    """

    event: str
    attempt_number: int | None = None
    message_id: str | None = None
    thread_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    actor: str = "staff"


class AttemptCreate(BaseModel):
    """Create attempt request."""

    attempt_number: int = Field(ge=1)


class MarkSentRequest(BaseModel):
    """Mark attempt sent request."""

    sent_at: datetime | None = None
    message_id: str | None = None
    thread_id: str | None = None
    email_subject: str | None = None
    actor: str = "staff"


class ClinicSelectionRequest(BaseModel):
    """Clinics picked for a referral."""

    clinics: list[str]


class ReferralSentRequest(BaseModel):
    """Referral email sent request."""

    clinic_names: list[str] | None = None
    sent_at: datetime | None = None


class CloseRequest(BaseModel):
    """Close case request."""

    reason: str | None = None
    workflow: ClosedWorkflow | None = None
    acknowledged: bool = False
    actor: str = "staff"


class ReopenRequest(BaseModel):
    """Reopen case request."""

    target_status: ClientStatus
    reason: str
    actor: str


class OfferSlotRequest(BaseModel):
    """Offer an availability slot."""

    day: str
    time: str
    clinicians: list[str] = Field(default_factory=list)
    start_date: date | None = None


class ScheduleRequestBody(BaseModel):
    """Schedule appointment request."""

    day: str | None = None
    time: str | None = None
    clinician: str | None = None
    start_date: date | None = None
    recurrence: Recurrence = Recurrence.WEEKLY
    communication_note: str | None = None
    offered_slot_id: str | None = None
    actor: str = "staff"


_SYSTEM_EVENTS = {
    "reply_detected",
    "follow_up_due",
    "all_attempts_exhausted",
    "attempt_sent",
}


def _build_event(body: TransitionRequest) -> LifecycleEvent:
    """Translate a request body into a lifecycle event."""
    name = body.event.strip().lower()
    if name == "attempt_sent":
        if body.attempt_number is None:
            raise ValidationError("attempt_sent requires attempt_number")
        return AttemptSent(body.attempt_number)
    if name == "reply_detected":
        return ReplyDetected(
            message_id=body.message_id,
            thread_id=body.thread_id,
            attempt_number=body.attempt_number,
        )
    if name == "follow_up_due":
        return FollowUpDue()
    if name == "all_attempts_exhausted":
        return AllAttemptsExhausted()
    try:
        kind = StaffActionKind(name)
    except ValueError as e:
        raise ValidationError(
            f"Unknown event: {body.event}",
            details={"allowed": sorted(_SYSTEM_EVENTS | {k.value for k in StaffActionKind})},
        ) from e
    return StaffAction(kind, dict(body.payload))


# ============================================================================
# Clients
# ============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_client(body: ClientCreate, engine: EngineDep) -> dict[str, Any]:
    """Register a new client in status ``new``."""
    client = await engine.create_client(
        Client(name=body.name, email=str(body.email), phone=body.phone)
    )
    return client.to_dict()


@router.get("/{client_id}")
async def get_client(client_id: str, engine: EngineDep) -> dict[str, Any]:
    """Client record plus the full attempt plan."""
    client = await engine.get_client(client_id)
    plan = await engine.attempt_plan(client_id)
    return {**client.to_dict(), "attempts": [a.to_dict() for a in plan]}


@router.get("/{client_id}/history")
async def get_status_history(client_id: str, engine: EngineDep) -> list[dict[str, Any]]:
    return [e.to_dict() for e in await engine.get_status_history(client_id)]


@router.post("/{client_id}/transitions")
async def apply_transition(client_id: str, body: TransitionRequest, engine: EngineDep):
    """Apply a lifecycle event.

    A rejected event returns 409 with the unchanged current status and
    the reason.
    """
    event = _build_event(body)
    result = await engine.transition(client_id, event, actor=body.actor)
    if result.rejected:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "error": "INVALID_TRANSITION",
                "message": result.reason,
                "details": {
                    "current_status": result.status.value,
                    "event": result.event,
                },
            },
        )
    return result.to_dict()


@router.get("/{client_id}/dueness")
async def get_dueness(client_id: str, engine: EngineDep, now: datetime | None = None) -> dict[str, Any]:
    """Dueness of the latest unanswered attempt."""
    dueness = await engine.evaluate_dueness(client_id, now)
    client = await engine.get_client(client_id)
    return {
        "client_id": client_id,
        "status": client.status.value,
        "dueness": dueness.value,
        "next_follow_up_due": client.next_follow_up_due.isoformat() if client.next_follow_up_due else None,
    }


# ============================================================================
# Attempts
# ============================================================================

@router.get("/{client_id}/attempts")
async def list_attempts(client_id: str, engine: EngineDep) -> list[dict[str, Any]]:
    return [a.to_dict() for a in await engine.attempt_plan(client_id)]


@router.post("/{client_id}/attempts", status_code=status.HTTP_201_CREATED)
async def create_attempt(client_id: str, body: AttemptCreate, engine: EngineDep) -> dict[str, Any]:
    attempt = await engine.create_attempt(client_id, body.attempt_number)
    return attempt.to_dict()


@router.post("/{client_id}/attempts/{attempt_number}/sent")
async def mark_attempt_sent(
    client_id: str,
    attempt_number: int,
    body: MarkSentRequest,
    engine: EngineDep,
) -> dict[str, Any]:
    """Mark an attempt sent. Repeating the call with the same time is a no-op."""
    attempt = await engine.find_attempt(client_id, attempt_number)
    sent = await engine.mark_sent(
        attempt.id,
        body.sent_at or engine.clock.now(),
        message_id=body.message_id,
        thread_id=body.thread_id,
        email_subject=body.email_subject,
        actor=body.actor,
    )
    return sent.to_dict()


# ============================================================================
# Referral and closure
# ============================================================================

@router.post("/{client_id}/clinic-selection")
async def select_clinics(client_id: str, body: ClinicSelectionRequest, engine: EngineDep) -> dict[str, Any]:
    await engine.get_client(client_id)
    return engine.select_clinics(client_id, body.clinics).to_dict()


@router.post("/{client_id}/referral")
async def record_referral(client_id: str, body: ReferralSentRequest, engine: EngineDep) -> dict[str, Any]:
    """Record that the referral email went out. Status is unchanged."""
    client = await engine.record_referral_sent(client_id, body.clinic_names, body.sent_at)
    return client.to_dict()


@router.post("/{client_id}/close")
async def close_case(client_id: str, body: CloseRequest, engine: EngineDep) -> dict[str, Any]:
    client = await engine.close_case(
        client_id,
        reason=body.reason,
        workflow=body.workflow,
        acknowledged=body.acknowledged,
        actor=body.actor,
    )
    return client.to_dict()


@router.post("/{client_id}/reopen")
async def reopen_case(client_id: str, body: ReopenRequest, engine: EngineDep) -> dict[str, Any]:
    entry = await engine.reopen_case(client_id, body.target_status, body.reason, body.actor)
    return entry.to_dict()


@router.get("/{client_id}/reopen-history")
async def get_reopen_history(client_id: str, engine: EngineDep) -> list[dict[str, Any]]:
    return [e.to_dict() for e in await engine.get_reopen_history(client_id)]


# ============================================================================
# Scheduling
# ============================================================================

@router.post("/{client_id}/offered-slots", status_code=status.HTTP_201_CREATED)
async def offer_slot(client_id: str, body: OfferSlotRequest, engine: EngineDep) -> dict[str, Any]:
    slot = await engine.offer_slot(
        client_id, body.day, body.time, body.clinicians, start_date=body.start_date
    )
    return slot.to_dict()


@router.post("/{client_id}/schedule")
async def schedule(client_id: str, body: ScheduleRequestBody, engine: EngineDep) -> dict[str, Any]:
    """Validate and book an appointment; the client moves to ``scheduled``."""
    request = ScheduleRequest(
        day=body.day,
        time=body.time,
        clinician=body.clinician,
        start_date=body.start_date,
        recurrence=body.recurrence,
        communication_note=body.communication_note,
    )
    validation = await engine.validate_and_schedule(
        client_id, request, offered_slot_id=body.offered_slot_id, actor=body.actor
    )
    return validation.to_dict()


@router.get("/{client_id}/appointment")
async def get_appointment(client_id: str, engine: EngineDep) -> dict[str, Any] | None:
    await engine.get_client(client_id)
    appointment = await engine.get_appointment(client_id)
    return appointment.to_dict() if appointment else None
