"""Tests for appointment validation."""

from datetime import date

import pytest

from outreach_engine.config import OutreachSettings
from outreach_engine.core.exceptions import (
    ClinicianRequired,
    CommunicationNoteRequired,
    DateMismatch,
    PastDateError,
    ValidationError,
)
from outreach_engine.domain.models import Client, OfferedSlot, Recurrence, Weekday
from outreach_engine.domain.status import ClientStatus
from outreach_engine.lifecycle.scheduling import (
    ScheduleRequest,
    SchedulingValidator,
    earliest_start_date,
)

TODAY = date(2025, 1, 6)  # Monday
NOTE = "Confirmed by phone with the client"


@pytest.fixture
def validator():
    return SchedulingValidator(OutreachSettings())


@pytest.fixture
def replied():
    return Client(name="Jane", email="jane@example.com", status=ClientStatus.IN_COMMUNICATION)


@pytest.fixture
def silent():
    return Client(name="Bob", email="bob@example.com", status=ClientStatus.AWAITING_RESPONSE)


def slot(client_id: str, clinicians: list[str], **kwargs) -> OfferedSlot:
    return OfferedSlot(client_id=client_id, day=Weekday.MONDAY, time="9:00 AM", clinicians=clinicians, **kwargs)


class TestSchedulingValidator:
    """Validation checks and their order."""

    def test_valid_request(self, validator, replied):
        request = ScheduleRequest(
            day="Monday", time="9:00 AM", clinician="Dr. Lee",
            start_date=date(2025, 1, 13), recurrence="bi-weekly",
        )
        result = validator.validate(replied, request, TODAY)
        appointment = result.appointment
        assert appointment.day == Weekday.MONDAY
        assert appointment.recurrence == Recurrence.BI_WEEKLY
        assert appointment.clinician == "Dr. Lee"
        assert not appointment.from_offered_slot
        assert result.warnings == []

    def test_note_required_without_email_reply(self, validator, silent):
        request = ScheduleRequest(day="Monday", time="9:00 AM", clinician="Dr. Lee", start_date=date(2025, 1, 13))
        with pytest.raises(CommunicationNoteRequired):
            validator.validate(silent, request, TODAY)

    def test_short_note_rejected(self, validator, silent):
        request = ScheduleRequest(
            day="Monday", time="9:00 AM", clinician="Dr. Lee",
            start_date=date(2025, 1, 13), communication_note="phoned",
        )
        with pytest.raises(CommunicationNoteRequired):
            validator.validate(silent, request, TODAY)

    def test_note_satisfies_out_of_band_scheduling(self, validator, silent):
        request = ScheduleRequest(
            day="Monday", time="9:00 AM", clinician="Dr. Lee",
            start_date=date(2025, 1, 13), communication_note=NOTE,
        )
        result = validator.validate(silent, request, TODAY)
        assert result.appointment.communication_note == NOTE

    def test_note_checked_before_dates(self, validator, silent):
        request = ScheduleRequest(day="Tuesday", time="9:00 AM", clinician="Dr. Lee", start_date=date(2024, 1, 1))
        with pytest.raises(CommunicationNoteRequired):
            validator.validate(silent, request, TODAY)

    def test_weekday_mismatch(self, validator, replied):
        request = ScheduleRequest(day="Tuesday", time="9:00 AM", clinician="Dr. Lee", start_date=date(2025, 1, 13))
        with pytest.raises(DateMismatch):
            validator.validate(replied, request, TODAY)

    def test_past_date(self, validator, replied):
        request = ScheduleRequest(day="Monday", time="9:00 AM", clinician="Dr. Lee", start_date=date(2024, 12, 30))
        with pytest.raises(PastDateError):
            validator.validate(replied, request, TODAY)

    def test_today_is_allowed_with_lead_warning(self, validator, replied):
        request = ScheduleRequest(day="Monday", time="9:00 AM", clinician="Dr. Lee", start_date=TODAY)
        result = validator.validate(replied, request, TODAY)
        assert len(result.warnings) == 1
        assert "lead time" in result.warnings[0]

    def test_clinician_required_without_slot(self, validator, replied):
        request = ScheduleRequest(day="Monday", time="9:00 AM", start_date=date(2025, 1, 13))
        with pytest.raises(ClinicianRequired):
            validator.validate(replied, request, TODAY)

    def test_single_clinician_slot_auto_selects(self, validator, replied):
        offered = slot(replied.id, ["Dr. Lee"], start_date=date(2025, 1, 13))
        result = validator.validate(replied, ScheduleRequest(offered_slot=offered), TODAY)
        assert result.appointment.clinician == "Dr. Lee"
        assert result.appointment.from_offered_slot
        assert result.appointment.offered_slot_id == offered.id

    def test_multi_clinician_slot_needs_choice(self, validator, replied):
        offered = slot(replied.id, ["Dr. Lee", "Dr. Kim"], start_date=date(2025, 1, 13))
        with pytest.raises(ClinicianRequired):
            validator.validate(replied, ScheduleRequest(offered_slot=offered), TODAY)

    def test_choice_must_be_on_slot(self, validator, replied):
        offered = slot(replied.id, ["Dr. Lee", "Dr. Kim"], start_date=date(2025, 1, 13))
        with pytest.raises(ClinicianRequired):
            validator.validate(replied, ScheduleRequest(clinician="Dr. Who", offered_slot=offered), TODAY)

    def test_multi_clinician_slot_with_choice(self, validator, replied):
        offered = slot(replied.id, ["Dr. Lee", "Dr. Kim"], start_date=date(2025, 1, 13))
        result = validator.validate(replied, ScheduleRequest(clinician="Dr. Kim", offered_slot=offered), TODAY)
        assert result.appointment.clinician == "Dr. Kim"

    def test_inactive_slot_rejected(self, validator, replied):
        offered = slot(replied.id, ["Dr. Lee"], start_date=date(2025, 1, 13), is_active=False)
        with pytest.raises(ValidationError):
            validator.validate(replied, ScheduleRequest(offered_slot=offered), TODAY)

    def test_unknown_recurrence(self, validator, replied):
        request = ScheduleRequest(
            day="Monday", time="9:00 AM", clinician="Dr. Lee",
            start_date=date(2025, 1, 13), recurrence="daily",
        )
        with pytest.raises(ValidationError):
            validator.validate(replied, request, TODAY)


def test_earliest_start_date():
    assert earliest_start_date(TODAY, OutreachSettings()) == date(2025, 1, 9)
    assert earliest_start_date(TODAY, OutreachSettings(scheduling_lead_days=0)) == TODAY
