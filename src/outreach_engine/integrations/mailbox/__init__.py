"""Mailbox Integration Module.

Providers:
- memory: In-process mailbox for development and testing
- imap: IMAP for reply detection, SMTP for sending
"""

from outreach_engine.integrations.mailbox.base import (
    MailAttachment,
    Mailbox,
    MailMessage,
    extract_address,
    same_address,
)
from outreach_engine.integrations.mailbox.factory import create_mailbox
from outreach_engine.integrations.mailbox.memory import InMemoryMailbox, SentMail

__all__ = [
    "MailAttachment",
    "Mailbox",
    "MailMessage",
    "InMemoryMailbox",
    "SentMail",
    "create_mailbox",
    "extract_address",
    "same_address",
]
