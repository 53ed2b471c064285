"""Reply monitor.

Asks the mailbox for inbound messages from each watched client since
their latest sent attempt and reports new reply threads. The monitor
never touches client state; the engine applies the detections through
the serialized transition path.

Transient mailbox failures end the current check, are recorded in
``MonitorStatus`` (the operator-visible "last checked" signal) and are
retried on the next tick.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Sequence

from outreach_engine.config import OutreachSettings
from outreach_engine.core.calendar import Clock, SystemClock
from outreach_engine.core.exceptions import MailboxError, TransientIOError
from outreach_engine.core.log_setup import get_logger
from outreach_engine.domain.events import ReplyDetected
from outreach_engine.domain.models import Client, OutreachAttempt
from outreach_engine.integrations.mailbox.base import Mailbox, MailMessage
from outreach_engine.lifecycle.attempts import as_utc

log = get_logger(__name__)


@dataclass
class MonitorStatus:
    """Health of the reply monitor."""

    last_checked_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0

    def is_stale(self, now: datetime, interval_seconds: float) -> bool:
        """True when no successful check happened within two intervals."""
        if self.last_success_at is None:
            return True
        return (now - self.last_success_at).total_seconds() > 2 * interval_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
        }


@dataclass
class DetectedReply:
    """One new reply thread for a client."""

    client_id: str
    message_id: str
    thread_id: str
    received_at: datetime
    attempt_number: int

    @property
    def event(self) -> ReplyDetected:
        return ReplyDetected(
            message_id=self.message_id,
            thread_id=self.thread_id,
            attempt_number=self.attempt_number,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "client_id": self.client_id,
            "message_id": self.message_id,
            "thread_id": self.thread_id,
            "received_at": self.received_at.isoformat(),
            "attempt_number": self.attempt_number,
        }


@dataclass
class ReplyCheckReport:
    """Outcome of one check."""

    checked_at: datetime
    clients_checked: int = 0
    replies: list[DetectedReply] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "checked_at": self.checked_at.isoformat(),
            "clients_checked": self.clients_checked,
            "replies": [r.to_dict() for r in self.replies],
            "errors": list(self.errors),
        }


StatusListener = Callable[[MonitorStatus], Awaitable[None] | None]


@dataclass
class _ClientWatch:
    """Per-client dedupe state."""

    watermark: datetime | None = None
    seen_messages: set[str] = field(default_factory=set)
    seen_threads: set[str] = field(default_factory=set)


class ReplyMonitor:
    """Detect client replies through a mailbox.

    Usage:
        monitor = ReplyMonitor(mailbox, settings)
        report = await monitor.check([(client, latest_sent_attempt), ...])
    """

    def __init__(
        self,
        mailbox: Mailbox,
        settings: OutreachSettings,
        clock: Clock | None = None,
        status_listener: StatusListener | None = None,
    ):
        self.mailbox = mailbox
        self.settings = settings
        self.clock = clock or SystemClock()
        self.status = MonitorStatus()
        self._listener = status_listener
        self._watches: dict[str, _ClientWatch] = {}
        self._check_lock = asyncio.Lock()

    def set_status_listener(self, listener: StatusListener | None) -> None:
        self._listener = listener

    def forget(self, client_id: str) -> None:
        """Drop dedupe state for a client (closed or scheduled)."""
        self._watches.pop(client_id, None)

    def release(self, reply: DetectedReply) -> None:
        """Let a reply be reported again after it failed to apply."""
        watch = self._watches.get(reply.client_id)
        if watch is None:
            return
        watch.seen_messages.discard(reply.message_id)
        watch.seen_threads.discard(reply.thread_id)
        if watch.watermark is not None and watch.watermark >= reply.received_at:
            watch.watermark = None

    async def check(self, targets: Sequence[tuple[Client, OutreachAttempt]]) -> ReplyCheckReport:
        """Check each (client, latest sent attempt) pair for new replies.

        Concurrent calls run one after another so a timer tick and a
        manual check never report the same thread twice.
        """
        async with self._check_lock:
            return await self._check(targets)

    async def _check(self, targets: Sequence[tuple[Client, OutreachAttempt]]) -> ReplyCheckReport:
        report = ReplyCheckReport(checked_at=self.clock.now())

        for client, attempt in targets:
            if attempt.sent_at is None or not client.email:
                continue
            report.clients_checked += 1

            try:
                messages = await self._list_messages(client, attempt)
            except TransientIOError as e:
                log.error(
                    "Reply check failed",
                    client_id=client.id,
                    error=str(e),
                )
                report.errors.append({"client_id": client.id, "error": e.message})
                # Shared mailbox: the rest of this tick would fail the same way
                break

            report.replies.extend(self._new_replies(client, attempt, messages))

        await self._record(report)

        if report.replies:
            log.info(
                "Replies detected",
                count=len(report.replies),
                clients_checked=report.clients_checked,
            )
        return report

    async def _list_messages(self, client: Client, attempt: OutreachAttempt) -> list[MailMessage]:
        watch = self._watches.get(client.id)
        since = as_utc(attempt.sent_at)
        if watch and watch.watermark and watch.watermark > since:
            since = watch.watermark

        try:
            return await asyncio.wait_for(
                self.mailbox.list_messages_since(client.email, since),
                timeout=self.settings.mailbox_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise MailboxError(
                "Mailbox listing timed out",
                details={"client_id": client.id, "timeout": self.settings.mailbox_timeout_seconds},
                cause=e,
            ) from e
        except TransientIOError:
            raise
        except (ConnectionError, OSError) as e:
            raise MailboxError("Mailbox unavailable", details={"client_id": client.id}, cause=e) from e

    def _new_replies(
        self,
        client: Client,
        attempt: OutreachAttempt,
        messages: Sequence[MailMessage],
    ) -> list[DetectedReply]:
        watch = self._watches.setdefault(client.id, _ClientWatch())
        sent_at = as_utc(attempt.sent_at)
        replies: list[DetectedReply] = []

        for message in sorted(messages, key=lambda m: m.received_at):
            received_at = as_utc(message.received_at)
            if received_at <= sent_at:
                continue
            if message.message_id in watch.seen_messages:
                continue
            watch.seen_messages.add(message.message_id)
            if watch.watermark is None or received_at > watch.watermark:
                watch.watermark = received_at

            thread = message.thread_key
            if thread in watch.seen_threads:
                continue
            watch.seen_threads.add(thread)

            replies.append(DetectedReply(
                client_id=client.id,
                message_id=message.message_id,
                thread_id=thread,
                received_at=received_at,
                attempt_number=attempt.attempt_number,
            ))

        return replies

    async def _record(self, report: ReplyCheckReport) -> None:
        self.status.last_checked_at = report.checked_at
        if report.success:
            self.status.last_success_at = report.checked_at
            self.status.last_error = None
            self.status.consecutive_failures = 0
        else:
            self.status.last_error = report.errors[-1]["error"]
            self.status.consecutive_failures += 1

        if self._listener is not None:
            result = self._listener(self.status)
            if inspect.isawaitable(result):
                await result
