"""Attempt tracking and due-date computation.

Two clocks run side by side:

- the response window, a fixed 24h after each send, decides dueness
  (``evaluate_dueness``) and fires follow-up/exhaustion events;
- the business-day cadence (``follow_up_1_days`` and friends) only
  produces the advisory ``next_follow_up_due`` date shown to staff.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Sequence

from outreach_engine.config import RESPONSE_WINDOW_HOURS, OutreachSettings
from outreach_engine.core.calendar import BusinessCalendar
from outreach_engine.core.exceptions import InvalidTransition
from outreach_engine.domain.models import (
    AttemptStatus,
    Client,
    Dueness,
    OutreachAttempt,
)
from outreach_engine.domain.status import OUTREACH_STATUSES, ClientStatus

# Client milestone field set when an attempt is sent
MILESTONE_FIELDS: dict[int, str] = {
    1: "initial_outreach_date",
    2: "follow_up_1_date",
    3: "follow_up_2_date",
}


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def response_window_end(sent_at: datetime) -> datetime:
    """End of the fixed response window for an attempt sent at ``sent_at``."""
    return as_utc(sent_at) + timedelta(hours=RESPONSE_WINDOW_HOURS)


def sent_attempts(attempts: Iterable[OutreachAttempt]) -> list[OutreachAttempt]:
    return sorted(
        (a for a in attempts if a.status == AttemptStatus.SENT),
        key=lambda a: a.attempt_number,
    )


def latest_sent_attempt(attempts: Iterable[OutreachAttempt]) -> OutreachAttempt | None:
    sent = sent_attempts(attempts)
    return sent[-1] if sent else None


def last_sent_number(attempts: Iterable[OutreachAttempt]) -> int:
    latest = latest_sent_attempt(attempts)
    return latest.attempt_number if latest else 0


def has_response(attempts: Iterable[OutreachAttempt]) -> bool:
    return any(a.response_detected for a in attempts)


def attempt_plan(
    attempts: Sequence[OutreachAttempt], count: int, client_id: str | None = None
) -> list[OutreachAttempt]:
    """Full 1..count view with ``not_created`` placeholders.

    Attempts beyond ``count`` (left from a larger earlier setting) are
    kept at the end so nothing recorded disappears from the view.
    """
    by_number = {a.attempt_number: a for a in attempts}
    if client_id is None and attempts:
        client_id = attempts[0].client_id

    plan = []
    for n in range(1, count + 1):
        existing = by_number.get(n)
        if existing is not None:
            plan.append(existing)
        else:
            plan.append(OutreachAttempt(
                client_id=client_id or "",
                attempt_number=n,
                id=f"placeholder-{n}",
                status=AttemptStatus.NOT_CREATED,
            ))

    plan.extend(a for n, a in sorted(by_number.items()) if n > count)
    return plan


def cadence_days(attempt_number: int, settings: OutreachSettings) -> int:
    """Business days to wait after sending ``attempt_number``."""
    if attempt_number >= settings.outreach_attempt_count:
        return settings.auto_close_days
    if attempt_number == 1:
        return settings.follow_up_1_days
    return settings.follow_up_2_days


def next_follow_up_due(
    attempt_number: int,
    sent_at: datetime,
    settings: OutreachSettings,
    calendar: BusinessCalendar,
) -> date:
    """Advisory date for the next follow-up (or auto-close after the last)."""
    return calendar.add_business_days(
        calendar.local_date(sent_at),
        cadence_days(attempt_number, settings),
    )


def evaluate_dueness(
    client: Client,
    attempts: Sequence[OutreachAttempt],
    now: datetime,
    settings: OutreachSettings,
    calendar: BusinessCalendar | None = None,
) -> Dueness:
    """Derive the follow-up state of a client.

    - ``overdue``: the latest sent, unanswered attempt's window elapsed
      and attempts remain
    - ``no_contact_ok_close``: same, but the final attempt is out
    - ``due_today``: outreach pending, or the window ends later today
    - ``not_due``: anything else, including any detected reply
    """
    calendar = calendar or BusinessCalendar(settings.timezone, settings.holiday_country)
    now = as_utc(now)

    if client.status not in OUTREACH_STATUSES:
        return Dueness.NOT_DUE
    if has_response(attempts):
        return Dueness.NOT_DUE

    latest = latest_sent_attempt(attempts)
    if latest is None:
        if client.status == ClientStatus.PENDING_OUTREACH:
            return Dueness.DUE_TODAY
        return Dueness.NOT_DUE

    window_end = latest.response_window_end or response_window_end(latest.sent_at or now)

    if now > window_end:
        if latest.attempt_number >= settings.outreach_attempt_count:
            return Dueness.NO_CONTACT_OK_CLOSE
        return Dueness.OVERDUE

    if calendar.local_date(window_end) == calendar.local_date(now):
        return Dueness.DUE_TODAY

    return Dueness.NOT_DUE


class AttemptTracker:
    """Rules for creating and sending attempts.

    Stateless apart from the injected settings; the engine loads and
    saves the records around these checks.
    """

    _CREATE_FROM: dict[bool, frozenset[ClientStatus]] = {
        True: frozenset({ClientStatus.PENDING_OUTREACH}),
        False: frozenset({ClientStatus.AWAITING_RESPONSE, ClientStatus.FOLLOW_UP_DUE}),
    }

    def __init__(self, settings: OutreachSettings, calendar: BusinessCalendar | None = None) -> None:
        self.settings = settings
        self.calendar = calendar or BusinessCalendar(settings.timezone, settings.holiday_country)

    def check_create(
        self,
        client: Client,
        attempts: Sequence[OutreachAttempt],
        attempt_number: int,
    ) -> OutreachAttempt | None:
        """Validate creating attempt ``attempt_number``.

        Returns:
            The existing attempt when it was already created, else None

        Raises:
            InvalidTransition: If the attempt may not be created now
        """
        event = f"create_attempt({attempt_number})"
        limit = self.settings.outreach_attempt_count

        for attempt in attempts:
            if attempt.attempt_number == attempt_number:
                return attempt

        if attempt_number < 1 or attempt_number > limit:
            raise InvalidTransition(
                f"Attempt {attempt_number} is outside 1..{limit}",
                current_status=client.status.value,
                event=event,
            )

        sent = {a.attempt_number for a in attempts if a.status == AttemptStatus.SENT}
        for n in range(1, attempt_number):
            if n not in sent:
                raise InvalidTransition(
                    f"Attempt {n} must be sent before attempt {attempt_number} is created",
                    current_status=client.status.value,
                    event=event,
                )

        if has_response(attempts):
            raise InvalidTransition(
                "Client already replied; no further attempts are created",
                current_status=client.status.value,
                event=event,
            )

        allowed = self._CREATE_FROM[attempt_number == 1]
        if client.status not in allowed:
            raise InvalidTransition(
                f"Attempt {attempt_number} cannot be created while {client.status.value}",
                current_status=client.status.value,
                event=event,
            )

        return None

    def check_mark_sent(self, attempt: OutreachAttempt, sent_at: datetime) -> bool:
        """Validate marking ``attempt`` sent.

        Returns:
            False when the attempt is already sent at ``sent_at`` (no-op)

        Raises:
            InvalidTransition: If it was already sent at a different time
        """
        if attempt.status != AttemptStatus.SENT:
            return True
        if attempt.sent_at is not None and as_utc(attempt.sent_at) == as_utc(sent_at):
            return False
        raise InvalidTransition(
            f"Attempt {attempt.attempt_number} was already sent at "
            f"{attempt.sent_at.isoformat() if attempt.sent_at else 'an unknown time'}",
            event=f"mark_sent({attempt.attempt_number})",
        )

    def apply_sent(self, client: Client, attempt: OutreachAttempt, sent_at: datetime) -> None:
        """Stamp attempt and client milestone fields for a send."""
        sent_at = as_utc(sent_at)
        attempt.status = AttemptStatus.SENT
        attempt.sent_at = sent_at
        attempt.response_window_end = response_window_end(sent_at)

        milestone = MILESTONE_FIELDS.get(attempt.attempt_number)
        if milestone is not None:
            setattr(client, milestone, sent_at)
        client.next_follow_up_due = next_follow_up_due(
            attempt.attempt_number, sent_at, self.settings, self.calendar
        )

    def evaluate(
        self, client: Client, attempts: Sequence[OutreachAttempt], now: datetime
    ) -> Dueness:
        return evaluate_dueness(client, attempts, now, self.settings, self.calendar)

    def plan(self, client: Client, attempts: Sequence[OutreachAttempt]) -> list[OutreachAttempt]:
        return attempt_plan(attempts, self.settings.outreach_attempt_count, client.id)
