"""IMAP/SMTP Mailbox Implementation.

Inbound listing uses imaplib in a worker thread (header-only fetch,
messages are never marked read). Outbound sending uses aiosmtplib.
Both directions are bounded by a timeout and raise ``MailboxError``.
"""

from __future__ import annotations

import asyncio
import email
import imaplib
from datetime import datetime, timezone
from email.message import Message
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid, parsedate_to_datetime

import aiosmtplib

from outreach_engine.config import MailboxSettings
from outreach_engine.core.exceptions import MailboxError, wrap_exception
from outreach_engine.core.log_setup import get_logger
from outreach_engine.core.retry import MAILBOX_RETRY_CONFIG, RetryConfig, retry_async
from outreach_engine.integrations.mailbox.base import (
    MailAttachment,
    Mailbox,
    MailMessage,
    same_address,
)

log = get_logger(__name__)

_HEADER_FIELDS = "(BODY.PEEK[HEADER.FIELDS (MESSAGE-ID FROM DATE SUBJECT IN-REPLY-TO REFERENCES)])"


def _thread_id(message: Message) -> str | None:
    """Root of the References chain, else In-Reply-To."""
    references = (message.get("References") or "").split()
    if references:
        return references[0].strip()
    in_reply_to = (message.get("In-Reply-To") or "").strip()
    return in_reply_to or None


def _received_at(message: Message) -> datetime | None:
    raw = message.get("Date")
    if not raw:
        return None
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class IMAPMailbox(Mailbox):
    """Mailbox over IMAP (inbound) and SMTP (outbound).

    Attributes:
        settings: Host and credential settings for both protocols
        timeout: Upper bound for a single list or send call, in seconds
    """

    def __init__(
        self,
        settings: MailboxSettings,
        timeout: float = 30.0,
        retry_config: RetryConfig = MAILBOX_RETRY_CONFIG,
    ):
        self.settings = settings
        self.timeout = timeout
        self.retry_config = retry_config

    # =========================================================================
    # Inbound
    # =========================================================================

    async def list_messages_since(self, address: str, since: datetime) -> list[MailMessage]:
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._list_sync, address, since),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise MailboxError(
                "IMAP listing timed out",
                details={"host": self.settings.imap.host, "timeout": self.timeout},
                cause=e,
            ) from e
        except (imaplib.IMAP4.error, OSError) as e:
            log.error("IMAP error", host=self.settings.imap.host, error=str(e))
            raise wrap_exception(e, MailboxError, "IMAP listing failed", host=self.settings.imap.host) from e

    def _connect(self) -> imaplib.IMAP4:
        imap = self.settings.imap
        if imap.use_ssl:
            conn = imaplib.IMAP4_SSL(imap.host, imap.port, timeout=self.timeout)
        else:
            conn = imaplib.IMAP4(imap.host, imap.port, timeout=self.timeout)
        conn.login(imap.username, imap.password)
        return conn

    def _list_sync(self, address: str, since: datetime) -> list[MailMessage]:
        conn = self._connect()
        try:
            status, _ = conn.select(self.settings.imap.folder, readonly=True)
            if status != "OK":
                raise MailboxError(
                    "IMAP folder selection failed",
                    details={"folder": self.settings.imap.folder},
                )

            # SINCE has day granularity; exact filtering happens below
            since_day = since.strftime("%d-%b-%Y")
            status, data = conn.search(None, "FROM", f'"{address}"', "SINCE", since_day)
            if status != "OK":
                raise MailboxError("IMAP search failed", details={"address": address})

            messages: list[MailMessage] = []
            for num in data[0].split():
                status, fetched = conn.fetch(num, _HEADER_FIELDS)
                if status != "OK" or not fetched or not isinstance(fetched[0], tuple):
                    log.warning("IMAP fetch failed", message_num=num.decode())
                    continue

                headers = email.message_from_bytes(fetched[0][1])
                sender = headers.get("From", "")
                received_at = _received_at(headers)
                if received_at is None or received_at <= since:
                    continue
                if not same_address(sender, address):
                    continue

                messages.append(MailMessage(
                    message_id=(headers.get("Message-ID") or f"<imap-{num.decode()}>").strip(),
                    sender=sender,
                    received_at=received_at,
                    subject=headers.get("Subject", ""),
                    thread_id=_thread_id(headers),
                ))

            return sorted(messages, key=lambda m: m.received_at)
        finally:
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                log.debug("IMAP logout failed", error=str(e))

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send_message(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: list[MailAttachment] | None = None,
    ) -> str:
        mime = self._build_mime_message(to, subject, body, attachments or [])
        await retry_async(self._send_once, mime, config=self.retry_config)
        message_id = mime["Message-ID"]
        log.info("Email sent via SMTP", message_id=message_id, to=to, subject=subject)
        return message_id

    async def _send_once(self, mime: MIMEMultipart) -> None:
        smtp = self.settings.smtp
        try:
            async with aiosmtplib.SMTP(
                hostname=smtp.host,
                port=smtp.port,
                use_tls=smtp.use_ssl,
                timeout=self.timeout,
            ) as client:
                if smtp.use_tls and not smtp.use_ssl:
                    await client.starttls()
                if smtp.username and smtp.password:
                    await client.login(smtp.username, smtp.password)
                await client.send_message(mime)
        except aiosmtplib.SMTPAuthenticationError as e:
            log.error("SMTP authentication failed", error=str(e))
            raise wrap_exception(e, MailboxError, "SMTP authentication failed") from e
        except aiosmtplib.SMTPException as e:
            log.error("SMTP error", error=str(e))
            raise wrap_exception(e, MailboxError, "SMTP send failed") from e
        except asyncio.TimeoutError as e:
            log.error("SMTP timeout", host=smtp.host)
            raise MailboxError("SMTP connection timeout", details={"host": smtp.host}, cause=e) from e

    def _build_mime_message(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: list[MailAttachment],
    ) -> MIMEMultipart:
        from_email = self.settings.from_email or self.settings.smtp.username
        if not from_email:
            raise MailboxError("No sender email configured")

        mime_msg = MIMEMultipart("mixed")
        mime_msg["Subject"] = subject
        mime_msg["From"] = formataddr((self.settings.from_name or "", from_email))
        mime_msg["To"] = to
        mime_msg["Date"] = formatdate(localtime=True)
        mime_msg["Message-ID"] = make_msgid(domain=from_email.split("@")[-1])

        mime_msg.attach(MIMEText(body, "plain", "utf-8"))

        for attachment in attachments:
            part = MIMEApplication(attachment.content, Name=attachment.filename)
            part["Content-Disposition"] = f'attachment; filename="{attachment.filename}"'
            part.replace_header("Content-Type", attachment.content_type)
            mime_msg.attach(part)

        return mime_msg
