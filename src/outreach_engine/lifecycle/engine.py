"""Outreach lifecycle engine.

Single entry point for every lifecycle mutation. Operations on the same
client run one at a time behind a per-client lock; different clients
proceed in parallel. Every status change goes through the pure
``transition`` function and is persisted with an optimistic version
check, followed by a status history entry.
"""
from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Awaitable, Iterable, Sequence, TypeVar

from outreach_engine.config import OutreachSettings
from outreach_engine.core.calendar import BusinessCalendar, Clock, SystemClock
from outreach_engine.core.exceptions import (
    InvalidTransition,
    MailboxError,
    OutreachEngineError,
    RecordNotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from outreach_engine.core.locks import KeyedLock
from outreach_engine.core.log_setup import get_logger
from outreach_engine.domain.events import (
    AllAttemptsExhausted,
    AttemptSent,
    FollowUpDue,
    LifecycleEvent,
    ReplyDetected,
    StaffAction,
    StaffActionKind,
    TransitionContext,
    TransitionResult,
)
from outreach_engine.domain.models import (
    AttemptStatus,
    Client,
    Dueness,
    OfferedSlot,
    OutreachAttempt,
    ReopenHistoryEntry,
    ScheduledAppointment,
    StatusHistoryEntry,
    Weekday,
)
from outreach_engine.domain.status import (
    OUTREACH_STATUSES,
    REPLY_WATCH_STATUSES,
    TERMINAL_STATUSES,
    ClientStatus,
    ClosedWorkflow,
)
from outreach_engine.integrations.mailbox.base import MailAttachment, Mailbox
from outreach_engine.lifecycle.attempts import (
    AttemptTracker,
    as_utc,
    last_sent_number,
    latest_sent_attempt,
)
from outreach_engine.lifecycle.referral import ClinicSelection, ReferralClosureManager
from outreach_engine.lifecycle.replies import (
    DetectedReply,
    MonitorStatus,
    ReplyCheckReport,
    ReplyMonitor,
    StatusListener,
)
from outreach_engine.lifecycle.scheduling import (
    ScheduleRequest,
    ScheduleValidation,
    SchedulingValidator,
)
from outreach_engine.lifecycle.state_machine import transition
from outreach_engine.lifecycle.timers import FollowUpTimers
from outreach_engine.storage.base import ClientStore

log = get_logger(__name__)

T = TypeVar("T")

# Staff actions that only dedicated operations may issue
_RESERVED_ACTIONS = frozenset({
    StaffActionKind.CLOSE,
    StaffActionKind.REOPEN,
    StaffActionKind.SCHEDULE,
})

# Timer checks fire just after the window end so the window has elapsed
_TIMER_GRACE = timedelta(seconds=1)


class OutreachEngine:
    """Facade over the lifecycle components.

    Usage:
        engine = OutreachEngine(store, mailbox, settings)
        await engine.mark_sent(attempt.id, sent_at)
        await engine.check_replies_now()
    """

    def __init__(
        self,
        store: ClientStore,
        mailbox: Mailbox | None = None,
        settings: OutreachSettings | None = None,
        clock: Clock | None = None,
        calendar: BusinessCalendar | None = None,
        status_listener: StatusListener | None = None,
    ) -> None:
        self.store = store
        self.mailbox = mailbox
        self.settings = settings or OutreachSettings()
        self.clock = clock or SystemClock()
        self.calendar = calendar or BusinessCalendar(
            self.settings.timezone, self.settings.holiday_country
        )

        self.tracker = AttemptTracker(self.settings, self.calendar)
        self.referrals = ReferralClosureManager(self.settings)
        self.scheduler = SchedulingValidator(self.settings)
        self.monitor = (
            ReplyMonitor(mailbox, self.settings, self.clock, status_listener)
            if mailbox is not None
            else None
        )
        self.timers = FollowUpTimers(self._on_follow_up_timer, self.clock)

        self._locks = KeyedLock(
            acquire_timeout=self.settings.storage_timeout_seconds + self.settings.mailbox_timeout_seconds
        )
        self._selections: dict[str, ClinicSelection] = {}
        self._timers_active = False

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        """Arm follow-up timers for every client awaiting a response."""
        self._timers_active = True
        clients = await self._io(self.store.list_clients([ClientStatus.AWAITING_RESPONSE]))
        for client in clients:
            attempts = await self._io(self.store.get_attempts(client.id))
            self._arm_timer(client, attempts)
        log.info("Outreach engine started", timers=len(self.timers))

    async def close(self) -> None:
        self._timers_active = False
        await self.timers.cancel_all()
        if self.mailbox is not None:
            await self.mailbox.close()
        log.info("Outreach engine stopped")

    @property
    def monitor_status(self) -> MonitorStatus:
        return self.monitor.status if self.monitor else MonitorStatus()

    # ========================================================================
    # Reads
    # ========================================================================

    async def create_client(self, client: Client) -> Client:
        saved = await self._io(self.store.save_client(client, None))
        log.info("Client created", client_id=saved.id, status=saved.status.value)
        return saved

    async def get_client(self, client_id: str) -> Client:
        return await self._io(self.store.get_client(client_id))

    async def get_attempts(self, client_id: str) -> list[OutreachAttempt]:
        return await self._io(self.store.get_attempts(client_id))

    async def attempt_plan(self, client_id: str) -> list[OutreachAttempt]:
        client = await self.get_client(client_id)
        attempts = await self.get_attempts(client_id)
        return self.tracker.plan(client, attempts)

    async def find_attempt(self, client_id: str, attempt_number: int) -> OutreachAttempt:
        for attempt in await self.get_attempts(client_id):
            if attempt.attempt_number == attempt_number:
                return attempt
        raise RecordNotFoundError(
            "Attempt not found",
            details={"client_id": client_id, "attempt_number": attempt_number},
        )

    async def get_reopen_history(self, client_id: str) -> list[ReopenHistoryEntry]:
        await self.get_client(client_id)
        return await self._io(self.store.get_reopen_history(client_id))

    async def get_status_history(self, client_id: str) -> list[StatusHistoryEntry]:
        await self.get_client(client_id)
        return await self._io(self.store.get_status_history(client_id))

    async def evaluate_dueness(self, client_id: str, now: datetime | None = None) -> Dueness:
        client = await self.get_client(client_id)
        attempts = await self.get_attempts(client_id)
        return self.tracker.evaluate(client, attempts, now or self.clock.now())

    # ========================================================================
    # Transitions
    # ========================================================================

    async def transition(
        self,
        client_id: str,
        event: LifecycleEvent,
        actor: str = "system",
    ) -> TransitionResult:
        """Apply ``event`` to a client.

        Returns the new status, or a rejected result carrying the
        unchanged status and a reason. Close, reopen and schedule are
        reserved for ``close_case``, ``reopen_case`` and
        ``validate_and_schedule``.
        """
        if isinstance(event, StaffAction) and event.kind in _RESERVED_ACTIONS:
            async with self._locks.hold(client_id):
                client = await self.get_client(client_id)
                result = TransitionResult.reject(
                    client.status, event.name, f"Use the dedicated {event.kind.value} operation"
                )
                self._log_rejection(client_id, result)
                return result

        if isinstance(event, AttemptSent):
            async with self._locks.hold(client_id):
                client, attempts = await self._load(client_id)
                attempt = next(
                    (a for a in attempts if a.attempt_number == event.attempt_number), None
                )
                if attempt is None:
                    result = TransitionResult.reject(
                        client.status, event.name, f"Attempt {event.attempt_number} was not created"
                    )
                    self._log_rejection(client_id, result)
                    return result
                previous = client.status
                try:
                    await self._mark_sent_locked(client, attempts, attempt, self.clock.now(), actor)
                except InvalidTransition as e:
                    return TransitionResult.reject(previous, event.name, e.message)
                return TransitionResult.accept(previous, client.status, event.name)

        async with self._locks.hold(client_id):
            client, attempts = await self._load(client_id)
            return await self._apply_locked(client, attempts, event, actor)

    async def _apply_locked(
        self,
        client: Client,
        attempts: Sequence[OutreachAttempt],
        event: LifecycleEvent,
        actor: str,
    ) -> TransitionResult:
        result = transition(client.status, event, self._context(attempts))
        if result.rejected:
            self._log_rejection(client.id, result)
            return result

        expected = client.version
        touched: list[OutreachAttempt] = []

        if isinstance(event, ReplyDetected):
            touched = self._mark_response(attempts, event)
        elif isinstance(event, StaffAction) and event.kind == StaffActionKind.COMPLETE_EVALUATION:
            if event.payload.get("notes"):
                client.evaluation_notes = str(event.payload["notes"])
            if event.payload.get("flagged") and event.payload.get("flag_reason"):
                client.flag_reason = str(event.payload["flag_reason"])

        if result.changed or touched:
            await self._commit(client, expected, result, actor, attempts=touched)
        return result

    # ========================================================================
    # Attempts
    # ========================================================================

    async def create_attempt(self, client_id: str, attempt_number: int) -> OutreachAttempt:
        """Create attempt ``attempt_number`` in ``pending`` state.

        Idempotent: an existing attempt with that number is returned.

        Raises:
            InvalidTransition: If the attempt may not be created now
        """
        async with self._locks.hold(client_id):
            client, attempts = await self._load(client_id)
            try:
                existing = self.tracker.check_create(client, attempts, attempt_number)
            except InvalidTransition as e:
                log.warning(
                    "Attempt creation rejected",
                    client_id=client_id,
                    status=client.status.value,
                    attempt_number=attempt_number,
                    reason=e.message,
                )
                raise
            if existing is not None:
                return existing

            attempt = OutreachAttempt(client_id=client_id, attempt_number=attempt_number)
            saved = await self._io(self.store.save_attempt(attempt))
            log.info("Attempt created", client_id=client_id, attempt_number=attempt_number)
            return saved

    async def mark_sent(
        self,
        attempt_id: str,
        sent_at: datetime,
        *,
        message_id: str | None = None,
        thread_id: str | None = None,
        email_subject: str | None = None,
        actor: str = "system",
    ) -> OutreachAttempt:
        """Mark an attempt sent and fire ``AttemptSent``.

        Idempotent for the same ``sent_at``.

        Raises:
            InvalidTransition: If the attempt was sent at another time or
                the client status does not allow this attempt
        """
        stub = await self._io(self.store.get_attempt(attempt_id))
        async with self._locks.hold(stub.client_id):
            client, attempts = await self._load(stub.client_id)
            attempt = next(a for a in attempts if a.id == attempt_id)
            return await self._mark_sent_locked(
                client,
                attempts,
                attempt,
                sent_at,
                actor,
                message_id=message_id,
                thread_id=thread_id,
                email_subject=email_subject,
            )

    async def _mark_sent_locked(
        self,
        client: Client,
        attempts: Sequence[OutreachAttempt],
        attempt: OutreachAttempt,
        sent_at: datetime,
        actor: str,
        *,
        message_id: str | None = None,
        thread_id: str | None = None,
        email_subject: str | None = None,
    ) -> OutreachAttempt:
        if not self.tracker.check_mark_sent(attempt, sent_at):
            return attempt

        others = [a for a in attempts if a.id != attempt.id]
        event = AttemptSent(attempt.attempt_number)
        result = transition(client.status, event, self._context(others))
        if result.rejected:
            self._log_rejection(client.id, result)
            raise InvalidTransition(
                result.reason or "Attempt cannot be sent",
                current_status=client.status.value,
                event=event.name,
            )

        expected = client.version
        self.tracker.apply_sent(client, attempt, sent_at)
        attempt.message_id = message_id or attempt.message_id
        attempt.thread_id = thread_id or attempt.thread_id or attempt.message_id
        attempt.email_subject = email_subject or attempt.email_subject

        await self._commit(client, expected, result, actor, attempts=[attempt])
        self._arm_timer(client, [*others, attempt])
        return attempt

    async def send_outreach(
        self,
        client_id: str,
        attempt_number: int,
        subject: str,
        body: str,
        attachments: list[MailAttachment] | None = None,
        actor: str = "system",
    ) -> OutreachAttempt:
        """Create, send through the mailbox and mark an attempt sent.

        An attempt that is already sent is returned without resending.
        """
        if self.mailbox is None:
            raise MailboxError("No mailbox configured")

        attempt = await self.create_attempt(client_id, attempt_number)
        if attempt.is_sent:
            return attempt

        client = await self.get_client(client_id)
        try:
            message_id = await asyncio.wait_for(
                self.mailbox.send_message(client.email, subject, body, attachments),
                timeout=self.settings.mailbox_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise MailboxError("Sending timed out", details={"client_id": client_id}, cause=e) from e

        return await self.mark_sent(
            attempt.id,
            self.clock.now(),
            message_id=message_id,
            email_subject=subject,
            actor=actor,
        )

    # ========================================================================
    # Replies and follow-ups
    # ========================================================================

    async def check_replies_now(self) -> ReplyCheckReport:
        """Poll the mailbox once and apply every new reply."""
        if self.monitor is None:
            raise MailboxError("No mailbox configured")

        targets: list[tuple[Client, OutreachAttempt]] = []
        for client in await self._io(self.store.list_clients(REPLY_WATCH_STATUSES)):
            attempts = await self._io(self.store.get_attempts(client.id))
            if any(a.response_detected for a in attempts):
                continue
            latest = latest_sent_attempt(attempts)
            if latest is not None:
                targets.append((client, latest))

        report = await self.monitor.check(targets)

        applied: list[DetectedReply] = []
        for reply in report.replies:
            try:
                result = await self.transition(reply.client_id, reply.event, actor="reply_monitor")
            except OutreachEngineError as e:
                self.monitor.release(reply)
                log.error("Reply could not be applied", client_id=reply.client_id, error=str(e))
                report.errors.append({"client_id": reply.client_id, "error": e.message})
                continue
            if result.accepted:
                applied.append(reply)
        report.replies = applied
        return report

    async def sweep(self, now: datetime | None = None) -> list[TransitionResult]:
        """Fire due follow-up events for every client in outreach."""
        now = now or self.clock.now()
        results = []
        for client in await self._io(self.store.list_clients(OUTREACH_STATUSES)):
            try:
                result = await self._follow_up_check(client.id, now, actor="sweep")
            except OutreachEngineError as e:
                log.error("Follow-up check failed", client_id=client.id, error=str(e))
                continue
            if result is not None:
                results.append(result)
        if results:
            log.info("Follow-up sweep applied", count=len(results))
        return results

    async def _on_follow_up_timer(self, client_id: str) -> None:
        await self._follow_up_check(client_id, self.clock.now(), actor="follow_up_timer")

    async def _follow_up_check(
        self, client_id: str, now: datetime, actor: str
    ) -> TransitionResult | None:
        async with self._locks.hold(client_id):
            client, attempts = await self._load(client_id)
            if client.status in TERMINAL_STATUSES:
                return None

            dueness = self.tracker.evaluate(client, attempts, now)
            event: LifecycleEvent
            if dueness == Dueness.OVERDUE and client.status == ClientStatus.AWAITING_RESPONSE:
                event = FollowUpDue()
            elif dueness == Dueness.NO_CONTACT_OK_CLOSE and client.status != ClientStatus.NO_CONTACT_OK_CLOSE:
                event = AllAttemptsExhausted()
            else:
                return None

            return await self._apply_locked(client, attempts, event, actor)

    # ========================================================================
    # Referral and closure
    # ========================================================================

    def select_clinics(self, client_id: str, clinics: Iterable[str]) -> ClinicSelection:
        """Remember the clinics picked for a referral. Nothing is persisted."""
        selection = self.referrals.select_clinics(client_id, clinics)
        self._selections[client_id] = selection
        return selection

    def get_clinic_selection(self, client_id: str) -> ClinicSelection | None:
        return self._selections.get(client_id)

    async def record_referral_sent(
        self,
        client_id: str,
        clinic_names: Iterable[str] | None = None,
        sent_at: datetime | None = None,
    ) -> Client:
        """Persist the referral email. Status changes only on close_case."""
        async with self._locks.hold(client_id):
            client = await self._io(self.store.get_client(client_id))
            if clinic_names is None:
                selection = self._selections.get(client_id)
                clinic_names = selection.clinics if selection else []
            self.referrals.apply_referral_sent(client, clinic_names, sent_at or self.clock.now())
            saved = await self._io(self.store.save_client(client, client.version))
            self._selections.pop(client_id, None)
            log.info(
                "Referral recorded",
                client_id=client_id,
                clinics=saved.referral_clinic_names,
            )
            return saved

    async def close_case(
        self,
        client_id: str,
        reason: str | None = None,
        workflow: ClosedWorkflow | str | None = None,
        acknowledged: bool = False,
        actor: str = "system",
    ) -> Client:
        """Close a client.

        Raises:
            CloseAcknowledgementRequired: Nothing was sent and the caller
                did not acknowledge closing anyway
            InvalidTransition: The client is already terminal
        """
        async with self._locks.hold(client_id):
            client, attempts = await self._load(client_id)
            plan = self.referrals.plan_close(client, reason, workflow, acknowledged)

            event = StaffAction(StaffActionKind.CLOSE, {"target": plan.target.value})
            result = transition(client.status, event, self._context(attempts))
            if result.rejected:
                self._log_rejection(client_id, result)
                raise InvalidTransition(
                    result.reason or "Close rejected",
                    current_status=client.status.value,
                    event=event.name,
                )

            expected = client.version
            self.referrals.apply_close(client, plan, self.clock.now())
            saved = await self._commit(client, expected, result, actor)
            self._release_client(client_id)
            return saved

    async def reopen_case(
        self,
        client_id: str,
        target_status: ClientStatus | str,
        reason: str,
        actor: str,
    ) -> ReopenHistoryEntry:
        """Reopen a closed client into ``target_status``.

        Raises:
            ReopenReasonRequired: Reason shorter than configured minimum
            InvalidTransition: Client not closed or target is closed
        """
        try:
            target = ClientStatus(target_status)
        except ValueError as e:
            raise ValidationError(f"Unknown status: {target_status}") from e

        async with self._locks.hold(client_id):
            client, attempts = await self._load(client_id)
            cleaned = self.referrals.check_reopen(client, target, reason)

            event = StaffAction(StaffActionKind.REOPEN, {"target": target.value})
            result = transition(client.status, event, self._context(attempts))
            if result.rejected:
                self._log_rejection(client_id, result)
                raise InvalidTransition(
                    result.reason or "Reopen rejected",
                    current_status=client.status.value,
                    event=event.name,
                )

            expected = client.version
            entry = self.referrals.build_reopen_entry(client, target, cleaned, actor, self.clock.now())
            self.referrals.clear_closure(client)
            await self._commit(client, expected, result, actor, reopen=entry)
            if target == ClientStatus.AWAITING_RESPONSE:
                self._arm_timer(client, attempts)
            return entry

    # ========================================================================
    # Scheduling
    # ========================================================================

    async def offer_slot(
        self,
        client_id: str,
        day: Weekday | str,
        time: str,
        clinicians: Iterable[str],
        start_date: date | None = None,
    ) -> OfferedSlot:
        await self.get_client(client_id)
        try:
            weekday = Weekday.parse(day)
        except ValueError as e:
            raise ValidationError(f"Unknown day: {day}") from e
        slot = OfferedSlot(
            client_id=client_id,
            day=weekday,
            time=time,
            clinicians=[c.strip() for c in clinicians if c.strip()],
            offered_at=self.clock.now(),
            start_date=start_date,
        )
        return await self._io(self.store.save_offered_slot(slot))

    async def get_appointment(self, client_id: str) -> ScheduledAppointment | None:
        return await self._io(self.store.get_appointment(client_id))

    async def validate_and_schedule(
        self,
        client_id: str,
        request: ScheduleRequest,
        offered_slot_id: str | None = None,
        actor: str = "system",
    ) -> ScheduleValidation:
        """Validate a proposal, persist the appointment and fire ``schedule``.

        Raises:
            InvalidTransition: Client status does not allow scheduling
            ValidationError: Any scheduling check failed (nothing mutated)
        """
        async with self._locks.hold(client_id):
            client, attempts = await self._load(client_id)

            if offered_slot_id is not None:
                slot = await self._io(self.store.get_offered_slot(offered_slot_id))
                if slot.client_id != client_id:
                    raise ValidationError(
                        "Offered slot belongs to another client",
                        details={"slot_id": offered_slot_id},
                    )
                request = replace(request, offered_slot=slot)

            event = StaffAction(StaffActionKind.SCHEDULE)
            result = transition(client.status, event, self._context(attempts))
            if result.rejected:
                self._log_rejection(client_id, result)
                raise InvalidTransition(
                    result.reason or "Scheduling rejected",
                    current_status=client.status.value,
                    event=event.name,
                )

            validation = self.scheduler.validate(
                client, request, self.calendar.today(self.clock)
            )

            expected = client.version
            client.scheduled_date = self.clock.now()
            await self._commit(client, expected, result, actor)
            appointment = await self._io(self.store.save_appointment(validation.appointment))
            validation.appointment = appointment

            if request.offered_slot is not None:
                slot = replace(request.offered_slot, is_active=False)
                await self._io(self.store.save_offered_slot(slot))

            self._release_client(client_id)
            log.info(
                "Appointment scheduled",
                client_id=client_id,
                day=appointment.day.value,
                start_date=appointment.start_date.isoformat(),
                warnings=len(validation.warnings),
            )
            return validation

    # ========================================================================
    # Internals
    # ========================================================================

    async def _io(self, awaitable: Awaitable[T]) -> T:
        """Bound a storage call by the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.settings.storage_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise StorageUnavailableError(
                "Storage call timed out",
                details={"timeout": self.settings.storage_timeout_seconds},
                cause=e,
            ) from e

    async def _load(self, client_id: str) -> tuple[Client, list[OutreachAttempt]]:
        client = await self._io(self.store.get_client(client_id))
        attempts = await self._io(self.store.get_attempts(client_id))
        return client, attempts

    def _context(self, attempts: Sequence[OutreachAttempt]) -> TransitionContext:
        return TransitionContext(
            last_sent_attempt=last_sent_number(attempts),
            attempt_limit=self.settings.outreach_attempt_count,
        )

    def _mark_response(
        self, attempts: Sequence[OutreachAttempt], event: ReplyDetected
    ) -> list[OutreachAttempt]:
        sent = [a for a in attempts if a.status == AttemptStatus.SENT]
        if not sent:
            return []
        target = None
        if event.attempt_number is not None:
            target = next((a for a in sent if a.attempt_number == event.attempt_number), None)
        if target is None:
            target = max(sent, key=lambda a: a.attempt_number)
        if target.response_detected:
            return []
        target.response_detected = True
        target.response_detected_at = self.clock.now()
        target.response_message_id = event.message_id
        return [target]

    async def _commit(
        self,
        client: Client,
        expected_version: int,
        result: TransitionResult,
        actor: str,
        *,
        attempts: Sequence[OutreachAttempt] = (),
        reopen: ReopenHistoryEntry | None = None,
    ) -> Client:
        previous = client.status
        client.status = result.status
        # Version check first: a stale client writes nothing
        saved = await self._io(self.store.save_client(client, expected_version))
        for attempt in attempts:
            await self._io(self.store.save_attempt(attempt))
        if reopen is not None:
            await self._io(self.store.append_reopen_entry(reopen))
        if result.changed:
            await self._io(self.store.append_status_history(StatusHistoryEntry(
                client_id=client.id,
                from_status=previous,
                to_status=result.status,
                event=result.event,
                actor=actor,
                at=self.clock.now(),
            )))
            log.info(
                "Transition applied",
                client_id=client.id,
                from_status=previous.value,
                to_status=result.status.value,
                event_name=result.event,
                actor=actor,
            )
        if result.status in TERMINAL_STATUSES or result.status == ClientStatus.IN_COMMUNICATION:
            self._release_client(client.id)
        client.version = saved.version
        return saved

    def _log_rejection(self, client_id: str, result: TransitionResult) -> None:
        log.warning(
            "Transition rejected",
            client_id=client_id,
            status=result.status.value,
            event_name=result.event,
            reason=result.reason,
        )

    def _arm_timer(self, client: Client, attempts: Sequence[OutreachAttempt]) -> None:
        if not self._timers_active or client.status != ClientStatus.AWAITING_RESPONSE:
            return
        latest = latest_sent_attempt(attempts)
        if latest is None or latest.response_window_end is None:
            return
        self.timers.schedule(client.id, as_utc(latest.response_window_end) + _TIMER_GRACE)

    def _release_client(self, client_id: str) -> None:
        """Stop follow-up checks and reply tracking for a settled client."""
        self.timers.cancel(client_id)
        if self.monitor is not None:
            self.monitor.forget(client_id)
