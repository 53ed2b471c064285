"""Base Mailbox Interface.

The engine consumes a mailbox through two operations: listing inbound
messages from an address since a moment, and sending a message.
Rendering and templating stay outside; bodies arrive pre-rendered.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parseaddr
from typing import Any


def extract_address(header: str | None) -> str:
    """Return the bare lowercase address from a ``Name <addr>`` header."""
    if not header:
        return ""
    _, address = parseaddr(header)
    return (address or header).strip().lower()


def same_address(header: str | None, email: str | None) -> bool:
    """Case-insensitive sender match against a client address."""
    if not header or not email:
        return False
    return extract_address(header) == extract_address(email)


@dataclass
class MailAttachment:
    """Outgoing attachment."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class MailMessage:
    """Inbound message as seen by the reply monitor."""

    message_id: str
    sender: str  # Raw From header, may be "Name <addr>"
    received_at: datetime
    subject: str = ""
    thread_id: str | None = None
    recipients: list[str] = field(default_factory=list)
    snippet: str = ""

    @property
    def sender_address(self) -> str:
        return extract_address(self.sender)

    @property
    def thread_key(self) -> str:
        """Thread identity; a message without a thread is its own thread."""
        return self.thread_id or self.message_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "message_id": self.message_id,
            "thread_id": self.thread_id,
            "sender": self.sender,
            "received_at": self.received_at.isoformat(),
            "subject": self.subject,
            "recipients": list(self.recipients),
        }


class Mailbox(ABC):
    """Abstract mailbox collaborator.

    Implementations must raise ``MailboxError`` (or a subclass of
    ``TransientIOError``) for network and authentication failures so
    the reply monitor can record them and retry on the next tick.
    """

    @abstractmethod
    async def list_messages_since(self, address: str, since: datetime) -> list[MailMessage]:
        """List inbound messages from ``address`` received after ``since``.

        Args:
            address: Sender address to match (case-insensitive)
            since: Only messages strictly after this moment

        Returns:
            Matching messages, oldest first
        """

    @abstractmethod
    async def send_message(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: list[MailAttachment] | None = None,
    ) -> str:
        """Send a message.

        Returns:
            Message ID assigned to the sent message
        """

    async def close(self) -> None:
        """Release connections. Default is a no-op."""
        return None
