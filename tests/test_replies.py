"""Tests for reply detection."""

from datetime import datetime, timedelta, timezone

import pytest

from outreach_engine.config import OutreachSettings
from outreach_engine.core.calendar import FixedClock
from outreach_engine.core.exceptions import MailboxError
from outreach_engine.domain.models import AttemptStatus, Client, OutreachAttempt
from outreach_engine.domain.status import ClientStatus
from outreach_engine.integrations.mailbox.base import extract_address, same_address
from outreach_engine.integrations.mailbox.memory import InMemoryMailbox
from outreach_engine.lifecycle.attempts import response_window_end
from outreach_engine.lifecycle.replies import MonitorStatus, ReplyMonitor

MONDAY_9AM = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def mailbox():
    return InMemoryMailbox()


@pytest.fixture
def clock():
    return FixedClock(MONDAY_9AM + timedelta(hours=3))


@pytest.fixture
def monitor(mailbox, clock):
    return ReplyMonitor(mailbox, OutreachSettings(), clock)


@pytest.fixture
def target():
    client = Client(name="Jane", email="Jane@Example.com", status=ClientStatus.AWAITING_RESPONSE)
    attempt = OutreachAttempt(
        client_id=client.id,
        attempt_number=1,
        status=AttemptStatus.SENT,
        sent_at=MONDAY_9AM,
        response_window_end=response_window_end(MONDAY_9AM),
    )
    return client, attempt


class TestAddressMatching:
    """Sender header parsing."""

    def test_extract_from_display_name(self):
        assert extract_address("Jane Doe <JANE@example.com>") == "jane@example.com"

    def test_same_address_is_case_insensitive(self):
        assert same_address('"Doe, Jane" <jane@EXAMPLE.com>', "Jane@example.com")
        assert not same_address("other@example.com", "jane@example.com")
        assert not same_address(None, "jane@example.com")


class TestReplyMonitor:
    """Polling and dedupe."""

    @pytest.mark.asyncio
    async def test_detects_reply_after_send(self, monitor, mailbox, target):
        mailbox.deliver("Jane <jane@example.com>", MONDAY_9AM + timedelta(hours=2), message_id="<m1>")

        report = await monitor.check([target])

        assert report.success
        assert report.clients_checked == 1
        assert len(report.replies) == 1
        reply = report.replies[0]
        assert reply.client_id == target[0].id
        assert reply.message_id == "<m1>"
        assert reply.attempt_number == 1
        assert reply.event.message_id == "<m1>"

    @pytest.mark.asyncio
    async def test_ignores_mail_before_send(self, monitor, mailbox, target):
        mailbox.deliver("jane@example.com", MONDAY_9AM - timedelta(minutes=1))

        report = await monitor.check([target])

        assert report.replies == []

    @pytest.mark.asyncio
    async def test_ignores_other_senders(self, monitor, mailbox, target):
        mailbox.deliver("someone@example.com", MONDAY_9AM + timedelta(hours=1))

        report = await monitor.check([target])

        assert report.replies == []

    @pytest.mark.asyncio
    async def test_repeated_checks_do_not_duplicate(self, monitor, mailbox, target):
        mailbox.deliver("jane@example.com", MONDAY_9AM + timedelta(hours=1), message_id="<m1>")

        first = await monitor.check([target])
        second = await monitor.check([target])

        assert len(first.replies) == 1
        assert second.replies == []

    @pytest.mark.asyncio
    async def test_one_reply_per_thread(self, monitor, mailbox, target):
        mailbox.deliver("jane@example.com", MONDAY_9AM + timedelta(hours=1), message_id="<m1>", thread_id="t1")
        mailbox.deliver("jane@example.com", MONDAY_9AM + timedelta(hours=2), message_id="<m2>", thread_id="t1")
        mailbox.deliver("jane@example.com", MONDAY_9AM + timedelta(hours=3), message_id="<m3>", thread_id="t2")

        report = await monitor.check([target])

        assert [r.thread_id for r in report.replies] == ["t1", "t2"]

    @pytest.mark.asyncio
    async def test_release_allows_redetection(self, monitor, mailbox, target):
        mailbox.deliver("jane@example.com", MONDAY_9AM + timedelta(hours=1), message_id="<m1>")

        first = await monitor.check([target])
        monitor.release(first.replies[0])
        second = await monitor.check([target])

        assert len(second.replies) == 1

    @pytest.mark.asyncio
    async def test_transient_error_is_reported_not_swallowed(self, monitor, mailbox, target, clock):
        mailbox.fail_next(MailboxError("IMAP login failed"))

        report = await monitor.check([target])

        assert not report.success
        assert report.errors == [{"client_id": target[0].id, "error": "IMAP login failed"}]
        assert monitor.status.last_checked_at == clock.now()
        assert monitor.status.last_success_at is None
        assert monitor.status.last_error == "IMAP login failed"
        assert monitor.status.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_recovery_resets_failures(self, monitor, mailbox, target):
        mailbox.fail_next(times=2)
        await monitor.check([target])
        await monitor.check([target])
        assert monitor.status.consecutive_failures == 2

        await monitor.check([target])

        assert monitor.status.consecutive_failures == 0
        assert monitor.status.last_error is None
        assert monitor.status.last_success_at is not None

    @pytest.mark.asyncio
    async def test_error_stops_tick_for_shared_mailbox(self, monitor, mailbox, target):
        other_client = Client(name="Bob", email="bob@example.com", status=ClientStatus.AWAITING_RESPONSE)
        other_attempt = OutreachAttempt(
            client_id=other_client.id,
            attempt_number=1,
            status=AttemptStatus.SENT,
            sent_at=MONDAY_9AM,
        )
        mailbox.fail_next()

        report = await monitor.check([target, (other_client, other_attempt)])

        assert mailbox.list_calls == 1
        assert len(report.errors) == 1

    @pytest.mark.asyncio
    async def test_status_listener_receives_updates(self, mailbox, clock, target):
        seen: list[MonitorStatus] = []

        async def listener(status: MonitorStatus) -> None:
            seen.append(status)

        monitor = ReplyMonitor(mailbox, OutreachSettings(), clock, status_listener=listener)
        await monitor.check([target])

        assert len(seen) == 1
        assert seen[0].last_success_at == clock.now()


class TestMonitorStatus:
    """Operator-visible staleness."""

    def test_never_checked_is_stale(self):
        assert MonitorStatus().is_stale(MONDAY_9AM, 300)

    def test_stale_after_two_intervals(self):
        status = MonitorStatus(last_success_at=MONDAY_9AM)
        assert not status.is_stale(MONDAY_9AM + timedelta(minutes=9), 300)
        assert status.is_stale(MONDAY_9AM + timedelta(minutes=11), 300)
