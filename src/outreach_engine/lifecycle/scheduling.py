"""Scheduling validation.

Checks a proposed appointment before the terminal ``scheduled``
transition. Checks run in a fixed order and stop at the first failure:

1. communication note, when the client has not replied by email
2. clinician disambiguation for the chosen offered slot
3. start date present and on the proposed weekday
4. start date not in the past

A start date inside the scheduling lead window is allowed with a
warning; the lead time is an offering guideline, not a hard rule.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta

from outreach_engine.config import COMMUNICATION_NOTE_MIN_LENGTH, OutreachSettings
from outreach_engine.core.exceptions import (
    ClinicianRequired,
    CommunicationNoteRequired,
    DateMismatch,
    PastDateError,
    ValidationError,
)
from outreach_engine.domain.models import (
    Client,
    OfferedSlot,
    Recurrence,
    ScheduledAppointment,
    Weekday,
)
from outreach_engine.domain.status import ClientStatus


def earliest_start_date(today: date, settings: OutreachSettings) -> date:
    """First start date that respects the scheduling lead time."""
    return today + timedelta(days=settings.scheduling_lead_days)


@dataclass
class ScheduleRequest:
    """Proposed appointment."""

    day: Weekday | str | None = None
    time: str | None = None
    clinician: str | None = None
    start_date: date | None = None
    recurrence: Recurrence | str = Recurrence.WEEKLY
    communication_note: str | None = None
    offered_slot: OfferedSlot | None = None


@dataclass
class ScheduleValidation:
    """Validated appointment plus non-blocking warnings."""

    appointment: ScheduledAppointment
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "appointment": self.appointment.to_dict(),
            "warnings": list(self.warnings),
        }


class SchedulingValidator:
    """Validate appointment proposals for a client."""

    def __init__(self, settings: OutreachSettings) -> None:
        self.settings = settings

    def validate(self, client: Client, request: ScheduleRequest, today: date) -> ScheduleValidation:
        """Validate ``request`` and build the appointment.

        Raises:
            CommunicationNoteRequired: Out-of-band scheduling without a note
            ClinicianRequired: Clinician missing or not on the offered slot
            DateMismatch: Start date falls on another weekday
            PastDateError: Start date before today
            ValidationError: Any other malformed input
        """
        note = (request.communication_note or "").strip()
        if client.status != ClientStatus.IN_COMMUNICATION and len(note) < COMMUNICATION_NOTE_MIN_LENGTH:
            raise CommunicationNoteRequired(
                f"A communication note of at least {COMMUNICATION_NOTE_MIN_LENGTH} characters "
                "is required when the client has not replied by email",
                details={"client_id": client.id, "status": client.status.value},
            )

        slot = request.offered_slot
        if slot is not None and not slot.is_active:
            raise ValidationError("Offered slot is no longer active", details={"slot_id": slot.id})

        day = self._resolve_day(request, slot)
        time = request.time or (slot.time if slot else None)
        if not time:
            raise ValidationError("Appointment time is required", details={"client_id": client.id})

        clinician = self._resolve_clinician(request, slot)

        start_date = request.start_date or (slot.start_date if slot else None)
        if start_date is None:
            raise ValidationError("Start date is required", details={"client_id": client.id})

        if Weekday.of(start_date) != day:
            raise DateMismatch(
                f"Start date {start_date.isoformat()} is a {Weekday.of(start_date).value}, "
                f"not a {day.value}",
                details={"start_date": start_date.isoformat(), "day": day.value},
            )

        if start_date < today:
            raise PastDateError(
                f"Start date {start_date.isoformat()} is in the past",
                details={"start_date": start_date.isoformat(), "today": today.isoformat()},
            )

        try:
            recurrence = Recurrence(request.recurrence)
        except ValueError as e:
            raise ValidationError(
                f"Unknown recurrence: {request.recurrence}",
                details={"allowed": [r.value for r in Recurrence]},
            ) from e

        warnings = []
        earliest = earliest_start_date(today, self.settings)
        if start_date < earliest:
            warnings.append(
                f"Start date is within the {self.settings.scheduling_lead_days}-day "
                f"scheduling lead time (earliest suggested {earliest.isoformat()})"
            )

        appointment = ScheduledAppointment(
            client_id=client.id,
            day=day,
            time=time,
            clinician=clinician,
            start_date=start_date,
            recurrence=recurrence,
            communication_note=note or None,
            from_offered_slot=slot is not None,
            offered_slot_id=slot.id if slot else None,
        )
        return ScheduleValidation(appointment=appointment, warnings=warnings)

    @staticmethod
    def _resolve_day(request: ScheduleRequest, slot: OfferedSlot | None) -> Weekday:
        raw = request.day or (slot.day if slot else None)
        if raw is None:
            raise ValidationError("Appointment day is required")
        try:
            return Weekday.parse(raw)
        except ValueError as e:
            raise ValidationError(
                f"Unknown day: {raw}",
                details={"allowed": [d.value for d in Weekday]},
            ) from e

    @staticmethod
    def _resolve_clinician(request: ScheduleRequest, slot: OfferedSlot | None) -> str:
        chosen = (request.clinician or "").strip()

        if slot is None or not slot.clinicians:
            if not chosen:
                raise ClinicianRequired("A clinician is required")
            return chosen

        if len(slot.clinicians) == 1 and not chosen:
            return slot.clinicians[0]

        if not chosen:
            raise ClinicianRequired(
                "The offered slot lists several clinicians; choose one",
                details={"clinicians": list(slot.clinicians)},
            )
        if chosen not in slot.clinicians:
            raise ClinicianRequired(
                f"{chosen} is not offered for this slot",
                details={"clinicians": list(slot.clinicians)},
            )
        return chosen
