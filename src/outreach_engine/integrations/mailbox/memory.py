"""In-memory mailbox for development and testing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from outreach_engine.core.exceptions import MailboxError
from outreach_engine.core.log_setup import get_logger
from outreach_engine.integrations.mailbox.base import (
    MailAttachment,
    Mailbox,
    MailMessage,
    same_address,
)

log = get_logger(__name__)


@dataclass
class SentMail:
    """Record of a message sent through the in-memory mailbox."""

    message_id: str
    to: str
    subject: str
    body: str
    sent_at: datetime
    attachments: list[MailAttachment] = field(default_factory=list)


class InMemoryMailbox(Mailbox):
    """Mailbox backed by lists.

    Tests deliver inbound mail with ``deliver`` and can make the next
    calls fail with ``fail_next``.
    """

    def __init__(self) -> None:
        self.inbox: list[MailMessage] = []
        self.sent: list[SentMail] = []
        self.list_calls = 0
        self._failures: list[Exception] = []

    def deliver(
        self,
        sender: str,
        received_at: datetime,
        *,
        subject: str = "",
        message_id: str | None = None,
        thread_id: str | None = None,
    ) -> MailMessage:
        """Add an inbound message."""
        if received_at.tzinfo is None:
            received_at = received_at.replace(tzinfo=timezone.utc)
        message = MailMessage(
            message_id=message_id or f"<{uuid4().hex}@inbound.test>",
            sender=sender,
            received_at=received_at,
            subject=subject,
            thread_id=thread_id,
        )
        self.inbox.append(message)
        return message

    def fail_next(self, error: Exception | None = None, times: int = 1) -> None:
        """Make the next ``times`` mailbox calls raise ``error``."""
        for _ in range(times):
            self._failures.append(error or MailboxError("Mailbox unavailable"))

    def _maybe_fail(self) -> None:
        if self._failures:
            raise self._failures.pop(0)

    async def list_messages_since(self, address: str, since: datetime) -> list[MailMessage]:
        self.list_calls += 1
        self._maybe_fail()
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        matches = [
            m for m in self.inbox
            if same_address(m.sender, address) and m.received_at > since
        ]
        return sorted(matches, key=lambda m: m.received_at)

    async def send_message(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: list[MailAttachment] | None = None,
    ) -> str:
        self._maybe_fail()
        message_id = f"<{uuid4().hex}@outbound.test>"
        self.sent.append(SentMail(
            message_id=message_id,
            to=to,
            subject=subject,
            body=body,
            sent_at=datetime.now(timezone.utc),
            attachments=list(attachments or []),
        ))
        log.debug("Message recorded", to=to, subject=subject, message_id=message_id)
        return message_id
