"""Mailbox factory."""

from __future__ import annotations

from outreach_engine.config import MailboxSettings
from outreach_engine.core.exceptions import ConfigurationError
from outreach_engine.core.log_setup import get_logger
from outreach_engine.integrations.mailbox.base import Mailbox

log = get_logger(__name__)


def create_mailbox(settings: MailboxSettings, timeout: float = 30.0) -> Mailbox:
    """Create the configured mailbox.

    Args:
        settings: Mailbox settings
        timeout: Per-call timeout for external mailboxes

    Raises:
        ConfigurationError: If the provider is unknown or incomplete
    """
    provider = settings.provider.lower()

    if provider == "memory":
        from outreach_engine.integrations.mailbox.memory import InMemoryMailbox

        log.info("Using in-memory mailbox")
        return InMemoryMailbox()

    if provider == "imap":
        if not settings.imap.host or not settings.smtp.host:
            raise ConfigurationError(
                "IMAP mailbox requires imap.host and smtp.host",
                details={"imap_host": settings.imap.host, "smtp_host": settings.smtp.host},
            )
        from outreach_engine.integrations.mailbox.imap import IMAPMailbox

        log.info("Using IMAP mailbox", imap_host=settings.imap.host, smtp_host=settings.smtp.host)
        return IMAPMailbox(settings, timeout=timeout)

    raise ConfigurationError(f"Unknown mailbox provider: {settings.provider}")
