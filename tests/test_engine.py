"""Tests for the outreach engine facade."""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone

import pytest
import structlog
from structlog.testing import LogCapture

from outreach_engine.core.exceptions import (
    CloseAcknowledgementRequired,
    ConcurrentModification,
    InvalidTransition,
    ReopenReasonRequired,
    StorageUnavailableError,
    ValidationError,
)
from outreach_engine.domain.events import ReplyDetected, StaffAction, StaffActionKind
from outreach_engine.domain.models import AttemptStatus, Client, Dueness
from outreach_engine.domain.status import ClientStatus, ClosedWorkflow
from outreach_engine.lifecycle.engine import OutreachEngine
from outreach_engine.lifecycle.scheduling import ScheduleRequest

MONDAY_9AM = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)
TUESDAY_10AM = MONDAY_9AM + timedelta(days=1, hours=1)
TUESDAY_11AM = MONDAY_9AM + timedelta(days=1, hours=2)


def conflict_once(store, monkeypatch, client_id):
    """Make the next save of ``client_id`` fail as if another writer won."""
    original = store.save_client
    pending = {client_id}

    async def save_client(client, expected_version):
        if client.id in pending:
            pending.discard(client.id)
            raise ConcurrentModification(
                "Client was modified by another writer", details={"client_id": client.id}
            )
        return await original(client, expected_version)

    monkeypatch.setattr(store, "save_client", save_client)


class TestOutreachFlow:
    """Attempts, follow-ups and exhaustion."""

    @pytest.mark.asyncio
    async def test_first_attempt_moves_to_awaiting_response(self, engine, make_client, send_attempt):
        client = await make_client()
        assert client.status == ClientStatus.PENDING_OUTREACH

        attempt = await send_attempt(client.id, 1, MONDAY_9AM)

        client = await engine.get_client(client.id)
        assert client.status == ClientStatus.AWAITING_RESPONSE
        assert client.initial_outreach_date == MONDAY_9AM
        assert attempt.status == AttemptStatus.SENT
        assert attempt.response_window_end == MONDAY_9AM + timedelta(hours=24)
        assert attempt.thread_id == "<out-1@clinic.test>"

    @pytest.mark.asyncio
    async def test_overdue_after_window_and_sweep_marks_follow_up(self, engine, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)

        assert await engine.evaluate_dueness(client.id, MONDAY_9AM + timedelta(hours=2)) == Dueness.NOT_DUE
        assert await engine.evaluate_dueness(client.id, TUESDAY_10AM) == Dueness.OVERDUE

        results = await engine.sweep(TUESDAY_10AM)
        assert [r.status for r in results] == [ClientStatus.FOLLOW_UP_DUE]
        assert (await engine.get_client(client.id)).status == ClientStatus.FOLLOW_UP_DUE

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, engine, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        await engine.sweep(TUESDAY_10AM)

        history_before = await engine.get_status_history(client.id)
        await engine.sweep(TUESDAY_10AM)
        assert await engine.get_status_history(client.id) == history_before

    @pytest.mark.asyncio
    async def test_sweep_continues_past_failing_client(self, engine, store, monkeypatch, make_client, send_attempt):
        jane = await make_client()
        bob = await make_client(name="Bob", email="bob@example.com")
        await send_attempt(jane.id, 1, MONDAY_9AM)
        await send_attempt(bob.id, 1, MONDAY_9AM)
        conflict_once(store, monkeypatch, jane.id)

        results = await engine.sweep(TUESDAY_10AM)

        assert [r.status for r in results] == [ClientStatus.FOLLOW_UP_DUE]
        assert (await engine.get_client(jane.id)).status == ClientStatus.AWAITING_RESPONSE
        assert (await engine.get_client(bob.id)).status == ClientStatus.FOLLOW_UP_DUE

        # Next sweep picks up the client that failed
        await engine.sweep(TUESDAY_11AM)
        assert (await engine.get_client(jane.id)).status == ClientStatus.FOLLOW_UP_DUE

    @pytest.mark.asyncio
    async def test_three_unanswered_attempts_exhaust(self, engine, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        await engine.sweep(MONDAY_9AM + timedelta(days=1, minutes=1))
        await send_attempt(client.id, 2, MONDAY_9AM + timedelta(days=1, hours=1))
        await engine.sweep(MONDAY_9AM + timedelta(days=2, hours=2))
        await send_attempt(client.id, 3, MONDAY_9AM + timedelta(days=2, hours=3))

        final_check = MONDAY_9AM + timedelta(days=3, hours=4)
        assert await engine.evaluate_dueness(client.id, final_check) == Dueness.NO_CONTACT_OK_CLOSE
        await engine.sweep(final_check)

        client = await engine.get_client(client.id)
        assert client.status == ClientStatus.NO_CONTACT_OK_CLOSE
        assert client.follow_up_2_date == MONDAY_9AM + timedelta(days=2, hours=3)
        with pytest.raises(InvalidTransition):
            await engine.create_attempt(client.id, 4)

    @pytest.mark.asyncio
    async def test_attempt_order_enforced(self, engine, make_client):
        client = await make_client()
        with pytest.raises(InvalidTransition):
            await engine.create_attempt(client.id, 2)

    @pytest.mark.asyncio
    async def test_first_attempt_requires_pending_outreach(self, engine, make_client):
        client = await make_client(ready_for_outreach=False)
        with pytest.raises(InvalidTransition):
            await engine.create_attempt(client.id, 1)

    @pytest.mark.asyncio
    async def test_mark_sent_is_idempotent(self, engine, make_client, send_attempt):
        client = await make_client()
        attempt = await send_attempt(client.id, 1, MONDAY_9AM)

        again = await engine.mark_sent(attempt.id, MONDAY_9AM)
        assert again.sent_at == MONDAY_9AM
        assert len(await engine.get_status_history(client.id)) == 4

        with pytest.raises(InvalidTransition):
            await engine.mark_sent(attempt.id, MONDAY_9AM + timedelta(minutes=5))

    @pytest.mark.asyncio
    async def test_create_attempt_returns_existing(self, engine, make_client):
        client = await make_client()
        first = await engine.create_attempt(client.id, 1)
        second = await engine.create_attempt(client.id, 1)
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_attempt_plan_fills_placeholders(self, engine, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)

        plan = await engine.attempt_plan(client.id)
        assert [a.attempt_number for a in plan] == [1, 2, 3]
        assert [a.status for a in plan] == [AttemptStatus.SENT, AttemptStatus.NOT_CREATED, AttemptStatus.NOT_CREATED]

    @pytest.mark.asyncio
    async def test_send_outreach_uses_mailbox(self, engine, mailbox, make_client):
        client = await make_client()
        attempt = await engine.send_outreach(client.id, 1, "Hello", "Body")

        assert len(mailbox.sent) == 1
        assert mailbox.sent[0].to == "jane@example.com"
        assert attempt.message_id == mailbox.sent[0].message_id
        assert attempt.email_subject == "Hello"

        # Already sent: no second email
        await engine.send_outreach(client.id, 1, "Hello", "Body")
        assert len(mailbox.sent) == 1


class TestReplies:
    """Reply detection through the engine."""

    @pytest.mark.asyncio
    async def test_reply_moves_to_in_communication(self, engine, mailbox, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        mailbox.deliver("Jane Doe <JANE@example.com>", TUESDAY_11AM, thread_id="<out-1@clinic.test>")

        report = await engine.check_replies_now()

        assert report.success
        assert [r.client_id for r in report.replies] == [client.id]
        assert (await engine.get_client(client.id)).status == ClientStatus.IN_COMMUNICATION

        attempts = await engine.get_attempts(client.id)
        assert attempts[0].response_detected
        with pytest.raises(InvalidTransition):
            await engine.create_attempt(client.id, 2)

    @pytest.mark.asyncio
    async def test_reply_overrides_follow_up_due(self, engine, mailbox, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        await engine.sweep(TUESDAY_10AM)
        mailbox.deliver("jane@example.com", TUESDAY_11AM)

        await engine.check_replies_now()

        client = await engine.get_client(client.id)
        assert client.status == ClientStatus.IN_COMMUNICATION
        assert await engine.evaluate_dueness(client.id, TUESDAY_11AM) == Dueness.NOT_DUE

    @pytest.mark.asyncio
    async def test_reply_applied_once(self, engine, mailbox, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        mailbox.deliver("jane@example.com", TUESDAY_11AM)

        await engine.check_replies_now()
        second = await engine.check_replies_now()

        assert second.replies == []
        history = await engine.get_status_history(client.id)
        assert [h.to_status for h in history].count(ClientStatus.IN_COMMUNICATION) == 1

    @pytest.mark.asyncio
    async def test_mail_before_send_ignored(self, engine, mailbox, make_client, send_attempt):
        client = await make_client()
        mailbox.deliver("jane@example.com", MONDAY_9AM - timedelta(hours=1))
        await send_attempt(client.id, 1, MONDAY_9AM)

        report = await engine.check_replies_now()

        assert report.replies == []
        assert (await engine.get_client(client.id)).status == ClientStatus.AWAITING_RESPONSE

    @pytest.mark.asyncio
    async def test_mailbox_failure_reported(self, engine, mailbox, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        mailbox.deliver("jane@example.com", TUESDAY_11AM)
        mailbox.fail_next()

        report = await engine.check_replies_now()
        assert not report.success
        assert (await engine.get_client(client.id)).status == ClientStatus.AWAITING_RESPONSE

        # Next check recovers
        report = await engine.check_replies_now()
        assert report.success
        assert (await engine.get_client(client.id)).status == ClientStatus.IN_COMMUNICATION

    @pytest.mark.asyncio
    async def test_conflicting_reply_is_reported_again(
        self, engine, store, mailbox, monkeypatch, make_client, send_attempt
    ):
        jane = await make_client()
        bob = await make_client(name="Bob", email="bob@example.com")
        await send_attempt(jane.id, 1, MONDAY_9AM)
        await send_attempt(bob.id, 1, MONDAY_9AM)
        mailbox.deliver("jane@example.com", TUESDAY_11AM)
        mailbox.deliver("bob@example.com", TUESDAY_11AM)
        conflict_once(store, monkeypatch, jane.id)

        report = await engine.check_replies_now()

        assert not report.success
        assert [e["client_id"] for e in report.errors] == [jane.id]
        assert [r.client_id for r in report.replies] == [bob.id]
        assert (await engine.get_client(jane.id)).status == ClientStatus.AWAITING_RESPONSE
        assert (await engine.get_client(bob.id)).status == ClientStatus.IN_COMMUNICATION

        report = await engine.check_replies_now()
        assert report.success
        assert [r.client_id for r in report.replies] == [jane.id]
        assert (await engine.get_client(jane.id)).status == ClientStatus.IN_COMMUNICATION

    @pytest.mark.asyncio
    async def test_concurrent_reply_and_follow_up(self, engine, mailbox, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        mailbox.deliver("jane@example.com", MONDAY_9AM + timedelta(days=1, minutes=30))

        await asyncio.gather(engine.check_replies_now(), engine.sweep(TUESDAY_10AM))

        client = await engine.get_client(client.id)
        assert client.status == ClientStatus.IN_COMMUNICATION
        assert await engine.sweep(TUESDAY_11AM) == []


class TestTransitions:
    """Generic transition entry point."""

    @pytest.mark.asyncio
    async def test_rejected_transition_keeps_status(self, engine, make_client):
        client = await make_client()
        result = await engine.transition(client.id, StaffAction(StaffActionKind.COMPLETE))

        assert result.rejected
        assert result.status == ClientStatus.PENDING_OUTREACH
        assert result.reason
        assert (await engine.get_client(client.id)).version == client.version

    @pytest.mark.parametrize(
        "kind",
        [StaffActionKind.CLOSE, StaffActionKind.REOPEN, StaffActionKind.SCHEDULE],
    )
    @pytest.mark.asyncio
    async def test_reserved_actions_rejected(self, engine, make_client, kind):
        client = await make_client()
        result = await engine.transition(client.id, StaffAction(kind, {"target": "closed_other"}))

        assert result.rejected
        assert (await engine.get_client(client.id)).status == ClientStatus.PENDING_OUTREACH

    @pytest.mark.asyncio
    async def test_transitions_logged_with_event_name(self, engine, monkeypatch, make_client):
        from outreach_engine.lifecycle import engine as engine_module

        captured = LogCapture()
        monkeypatch.setattr(
            engine_module,
            "log",
            structlog.wrap_logger(
                None,
                processors=[captured],
                wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
            ),
        )
        client = await make_client()
        await engine.transition(client.id, StaffAction(StaffActionKind.COMPLETE))

        applied = [e for e in captured.entries if e["event"] == "Transition applied"]
        rejected = [e for e in captured.entries if e["event"] == "Transition rejected"]
        assert [e["event_name"] for e in applied] == [
            "submit_for_evaluation", "complete_evaluation", "approve_for_outreach",
        ]
        assert rejected[0]["log_level"] == "warning"
        assert rejected[0]["client_id"] == client.id

    @pytest.mark.asyncio
    async def test_reserved_action_waits_for_client_lock(self, engine, make_client):
        client = await make_client()

        async with engine._locks.hold(client.id):
            task = asyncio.create_task(
                engine.transition(client.id, StaffAction(StaffActionKind.CLOSE))
            )
            await asyncio.sleep(0.05)
            assert not task.done()

        result = await task
        assert result.rejected

    @pytest.mark.asyncio
    async def test_status_history_records_each_change(self, engine, make_client):
        client = await make_client()
        history = await engine.get_status_history(client.id)

        assert [(h.from_status, h.to_status) for h in history] == [
            (ClientStatus.NEW, ClientStatus.PENDING_EVALUATION),
            (ClientStatus.PENDING_EVALUATION, ClientStatus.EVALUATION_COMPLETE),
            (ClientStatus.EVALUATION_COMPLETE, ClientStatus.PENDING_OUTREACH),
        ]

    @pytest.mark.asyncio
    async def test_reply_on_terminal_client_rejected(self, engine, make_client):
        client = await make_client()
        await engine.transition(client.id, StaffAction(StaffActionKind.MARK_DUPLICATE))

        result = await engine.transition(client.id, ReplyDetected(message_id="<x@test>"))
        assert result.rejected
        assert result.status == ClientStatus.DUPLICATE

    @pytest.mark.asyncio
    async def test_evaluation_notes_saved(self, engine):
        client = await engine.create_client(Client(name="Sam", email="sam@example.com"))
        await engine.transition(client.id, StaffAction(StaffActionKind.SUBMIT_FOR_EVALUATION))
        await engine.transition(
            client.id,
            StaffAction(
                StaffActionKind.COMPLETE_EVALUATION,
                {"flagged": True, "flag_reason": "Needs review", "notes": "Intake ok"},
            ),
        )

        client = await engine.get_client(client.id)
        assert client.status == ClientStatus.EVALUATION_FLAGGED
        assert client.flag_reason == "Needs review"
        assert client.evaluation_notes == "Intake ok"


class TestCloseAndReopen:
    """Closure and reopen through the engine."""

    @pytest.mark.asyncio
    async def test_close_requires_acknowledgement(self, engine, make_client):
        client = await make_client()
        with pytest.raises(CloseAcknowledgementRequired):
            await engine.close_case(client.id)
        assert (await engine.get_client(client.id)).status == ClientStatus.PENDING_OUTREACH

    @pytest.mark.asyncio
    async def test_referral_then_close(self, engine, make_client):
        client = await make_client()
        await engine.transition(client.id, StaffAction(StaffActionKind.REFER))
        engine.select_clinics(client.id, ["North Clinic", "South Clinic"])

        client = await engine.record_referral_sent(client.id)
        assert client.status == ClientStatus.PENDING_REFERRAL
        assert client.referral_clinic_names == ["North Clinic", "South Clinic"]
        assert engine.get_clinic_selection(client.id) is None

        client = await engine.close_case(client.id)
        assert client.status == ClientStatus.REFERRED
        assert client.closed_reason == "referral_sent"
        assert client.closed_from_workflow == ClosedWorkflow.REFERRAL

    @pytest.mark.asyncio
    async def test_reopen_records_history(self, engine, clock, make_client):
        client = await make_client()
        await engine.close_case(client.id, acknowledged=True, workflow="outreach")
        clock.advance(timedelta(days=2))

        entry = await engine.reopen_case(
            client.id, "pending_outreach", "Client emailed the front desk", actor="alice"
        )

        assert entry.previous_status == ClientStatus.CLOSED_OTHER
        assert entry.new_status == ClientStatus.PENDING_OUTREACH
        assert entry.closed_reason == "closed_without_referral"
        assert entry.closed_from_workflow == ClosedWorkflow.OUTREACH

        client = await engine.get_client(client.id)
        assert client.status == ClientStatus.PENDING_OUTREACH
        assert client.closed_date is None
        assert client.closed_reason is None
        assert await engine.get_reopen_history(client.id) == [entry]

    @pytest.mark.asyncio
    async def test_reopen_needs_reason(self, engine, make_client):
        client = await make_client()
        await engine.close_case(client.id, acknowledged=True)

        with pytest.raises(ReopenReasonRequired):
            await engine.reopen_case(client.id, "pending_outreach", "oops", actor="alice")
        assert (await engine.get_client(client.id)).status == ClientStatus.CLOSED_OTHER

    @pytest.mark.asyncio
    async def test_reopen_unknown_status(self, engine, make_client):
        client = await make_client()
        await engine.close_case(client.id, acknowledged=True)

        with pytest.raises(ValidationError):
            await engine.reopen_case(client.id, "archived", "Client emailed the front desk", actor="alice")

    @pytest.mark.asyncio
    async def test_close_exhausted_client(self, engine, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        await send_attempt(client.id, 2, MONDAY_9AM + timedelta(days=1, hours=1))
        await send_attempt(client.id, 3, MONDAY_9AM + timedelta(days=2, hours=1))
        await engine.sweep(MONDAY_9AM + timedelta(days=4))

        client = await engine.close_case(client.id)
        assert client.status == ClientStatus.CLOSED_NO_CONTACT
        assert client.closed_from_status == ClientStatus.NO_CONTACT_OK_CLOSE


class TestScheduling:
    """Appointment scheduling through the engine."""

    @pytest.mark.asyncio
    async def test_schedule_from_offered_slot(self, engine, mailbox, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        mailbox.deliver("jane@example.com", TUESDAY_11AM)
        await engine.check_replies_now()

        slot = await engine.offer_slot(client.id, "monday", "9:00 AM", ["Dr. Lee"], start_date=date(2025, 1, 13))
        validation = await engine.validate_and_schedule(
            client.id, ScheduleRequest(), offered_slot_id=slot.id, actor="alice"
        )

        assert validation.appointment.clinician == "Dr. Lee"
        assert validation.warnings == []
        client = await engine.get_client(client.id)
        assert client.status == ClientStatus.SCHEDULED
        assert client.scheduled_date == MONDAY_9AM
        assert (await engine.get_appointment(client.id)).id == validation.appointment.id
        assert not (await engine.store.get_offered_slot(slot.id)).is_active

    @pytest.mark.asyncio
    async def test_failed_validation_changes_nothing(self, engine, make_client):
        client = await make_client()
        request = ScheduleRequest(
            day="Tuesday", time="9:00 AM", clinician="Dr. Lee",
            start_date=date(2025, 1, 13), communication_note="Confirmed by phone call",
        )
        with pytest.raises(ValidationError):
            await engine.validate_and_schedule(client.id, request)

        assert (await engine.get_client(client.id)).status == ClientStatus.PENDING_OUTREACH
        assert await engine.get_appointment(client.id) is None

    @pytest.mark.asyncio
    async def test_slot_of_other_client_rejected(self, engine, make_client):
        client = await make_client()
        other = await make_client(name="Bob", email="bob@example.com")
        slot = await engine.offer_slot(other.id, "Monday", "9:00 AM", ["Dr. Lee"], start_date=date(2025, 1, 13))

        with pytest.raises(ValidationError):
            await engine.validate_and_schedule(client.id, ScheduleRequest(), offered_slot_id=slot.id)

    @pytest.mark.asyncio
    async def test_conflict_leaves_no_appointment(
        self, engine, store, mailbox, monkeypatch, make_client, send_attempt
    ):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        mailbox.deliver("jane@example.com", TUESDAY_11AM)
        await engine.check_replies_now()
        slot = await engine.offer_slot(client.id, "Monday", "9:00 AM", ["Dr. Lee"], start_date=date(2025, 1, 13))
        conflict_once(store, monkeypatch, client.id)

        with pytest.raises(ConcurrentModification):
            await engine.validate_and_schedule(client.id, ScheduleRequest(), offered_slot_id=slot.id)

        assert (await engine.get_client(client.id)).status == ClientStatus.IN_COMMUNICATION
        assert await engine.get_appointment(client.id) is None
        assert (await engine.store.get_offered_slot(slot.id)).is_active

    @pytest.mark.asyncio
    async def test_cannot_schedule_closed_client(self, engine, make_client):
        client = await make_client()
        await engine.close_case(client.id, acknowledged=True)
        request = ScheduleRequest(
            day="Monday", time="9:00 AM", clinician="Dr. Lee",
            start_date=date(2025, 1, 13), communication_note="Confirmed by phone call",
        )
        with pytest.raises(InvalidTransition):
            await engine.validate_and_schedule(client.id, request)


class TestConsistency:
    """Versioning, timeouts and timers."""

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, store, make_client):
        client = await make_client()
        stale = await store.get_client(client.id)
        fresh = await store.get_client(client.id)

        await store.save_client(fresh, fresh.version)
        with pytest.raises(ConcurrentModification):
            await store.save_client(stale, stale.version)

    @pytest.mark.asyncio
    async def test_storage_timeout(self, mailbox, clock, calendar):
        from outreach_engine.config import OutreachSettings

        class SlowStore:
            async def get_client(self, client_id):
                await asyncio.sleep(1)

        engine = OutreachEngine(
            SlowStore(), mailbox, OutreachSettings(storage_timeout_seconds=0.05),
            clock=clock, calendar=calendar,
        )
        with pytest.raises(StorageUnavailableError):
            await engine.get_client("missing")

    @pytest.mark.asyncio
    async def test_start_arms_timers_for_awaiting_clients(self, engine, make_client, send_attempt):
        client = await make_client()
        await send_attempt(client.id, 1, MONDAY_9AM)
        assert not engine.timers.pending(client.id)

        await engine.start()
        try:
            assert engine.timers.pending(client.id)
        finally:
            await engine.close()
        assert not engine.timers.pending(client.id)

    @pytest.mark.asyncio
    async def test_reply_cancels_timer(self, engine, mailbox, make_client, send_attempt):
        client = await make_client()
        await engine.start()
        try:
            await send_attempt(client.id, 1, MONDAY_9AM)
            assert engine.timers.pending(client.id)

            mailbox.deliver("jane@example.com", TUESDAY_11AM)
            await engine.check_replies_now()
            assert not engine.timers.pending(client.id)
        finally:
            await engine.close()
