"""Lifecycle state machine.

``transition`` is a pure function of the current status, an event and
the attempt facts in ``TransitionContext``. It never raises for an
illegal pair; it returns a rejected ``TransitionResult`` carrying the
unchanged status and a readable reason. Callers that need an exception
use ``require``.
"""
from __future__ import annotations

from outreach_engine.core.exceptions import InvalidTransition
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
from outreach_engine.domain.status import (
    CLOSED_STATUSES,
    SCHEDULABLE_STATUSES,
    TERMINAL_STATUSES,
    ClientStatus,
)

S = ClientStatus

_DEFAULT_CONTEXT = TransitionContext()

# Simple staff actions: kind -> (allowed source statuses, target)
_STAFF_TRANSITIONS: dict[StaffActionKind, tuple[frozenset[ClientStatus], ClientStatus]] = {
    StaffActionKind.SUBMIT_FOR_EVALUATION: (
        frozenset({S.NEW}),
        S.PENDING_EVALUATION,
    ),
    StaffActionKind.APPROVE_FOR_OUTREACH: (
        frozenset({S.EVALUATION_COMPLETE, S.EVALUATION_FLAGGED}),
        S.PENDING_OUTREACH,
    ),
    StaffActionKind.REFER: (
        frozenset({
            S.NEW,
            S.PENDING_EVALUATION,
            S.EVALUATION_COMPLETE,
            S.EVALUATION_FLAGGED,
            S.PENDING_OUTREACH,
            S.AWAITING_RESPONSE,
            S.FOLLOW_UP_DUE,
            S.IN_COMMUNICATION,
            S.NO_CONTACT_OK_CLOSE,
        }),
        S.PENDING_REFERRAL,
    ),
    StaffActionKind.READY_TO_SCHEDULE: (
        frozenset({S.IN_COMMUNICATION}),
        S.READY_TO_SCHEDULE,
    ),
    StaffActionKind.AWAIT_SCHEDULING: (
        frozenset({S.IN_COMMUNICATION, S.READY_TO_SCHEDULE}),
        S.AWAITING_SCHEDULING,
    ),
    StaffActionKind.SCHEDULE: (SCHEDULABLE_STATUSES, S.SCHEDULED),
    StaffActionKind.COMPLETE: (frozenset({S.SCHEDULED}), S.COMPLETED),
    StaffActionKind.MARK_DUPLICATE: (
        frozenset(set(ClientStatus) - TERMINAL_STATUSES),
        S.DUPLICATE,
    ),
}

_ATTEMPT_FOLLOW_ON_SOURCES = frozenset({S.AWAITING_RESPONSE, S.FOLLOW_UP_DUE})


def transition(
    current: ClientStatus,
    event: LifecycleEvent,
    context: TransitionContext | None = None,
) -> TransitionResult:
    """Compute the status that ``event`` leads to from ``current``.

    Args:
        current: Current client status
        event: Lifecycle event to apply
        context: Last sent attempt number and configured attempt limit

    Returns:
        Accepted result with the new status, or a rejected result with
        the unchanged status and a reason
    """
    context = context or _DEFAULT_CONTEXT

    if isinstance(event, AttemptSent):
        return _on_attempt_sent(current, event, context)
    if isinstance(event, ReplyDetected):
        return _on_reply_detected(current, event)
    if isinstance(event, FollowUpDue):
        return _on_follow_up_due(current, event, context)
    if isinstance(event, AllAttemptsExhausted):
        return _on_all_attempts_exhausted(current, event, context)
    if isinstance(event, StaffAction):
        return _on_staff_action(current, event)

    return TransitionResult.reject(current, repr(event), f"Unknown event type {type(event).__name__}")


def require(
    current: ClientStatus,
    event: LifecycleEvent,
    context: TransitionContext | None = None,
) -> TransitionResult:
    """Like ``transition`` but raise on rejection.

    Raises:
        InvalidTransition: If the (status, event) pair is illegal
    """
    result = transition(current, event, context)
    if result.rejected:
        raise InvalidTransition(
            result.reason or "Transition rejected",
            current_status=current.value,
            event=result.event,
        )
    return result


# =============================================================================
# Event handlers
# =============================================================================


def _on_attempt_sent(
    current: ClientStatus, event: AttemptSent, context: TransitionContext
) -> TransitionResult:
    n = event.attempt_number
    name = event.name

    if n < 1:
        return TransitionResult.reject(current, name, "Attempt numbers start at 1")
    if n > context.attempt_limit:
        return TransitionResult.reject(
            current, name, f"Attempt {n} exceeds the configured limit of {context.attempt_limit}"
        )
    if context.last_sent_attempt != n - 1:
        return TransitionResult.reject(
            current,
            name,
            f"Attempt {n} requires attempt {n - 1} to be the last sent "
            f"(last sent is {context.last_sent_attempt})",
        )

    if n == 1:
        if current != S.PENDING_OUTREACH:
            return TransitionResult.reject(
                current, name, f"Initial outreach can only be sent from pending_outreach, not {current.value}"
            )
        return TransitionResult.accept(current, S.AWAITING_RESPONSE, name)

    if current not in _ATTEMPT_FOLLOW_ON_SOURCES:
        return TransitionResult.reject(
            current, name, f"Follow-up attempt {n} cannot be sent while {current.value}"
        )
    return TransitionResult.accept(current, S.AWAITING_RESPONSE, name)


def _on_reply_detected(current: ClientStatus, event: ReplyDetected) -> TransitionResult:
    if current in TERMINAL_STATUSES:
        return TransitionResult.reject(
            current, event.name, f"Replies are not applied to {current.value} clients"
        )
    # Client responsiveness overrides any outstanding follow-up
    return TransitionResult.accept(current, S.IN_COMMUNICATION, event.name)


def _on_follow_up_due(
    current: ClientStatus, event: FollowUpDue, context: TransitionContext
) -> TransitionResult:
    if current == S.FOLLOW_UP_DUE:
        return TransitionResult.accept(current, current, event.name)
    if current != S.AWAITING_RESPONSE:
        return TransitionResult.reject(
            current, event.name, f"No follow-up is pending while {current.value}"
        )
    if context.last_sent_attempt < 1:
        return TransitionResult.reject(current, event.name, "No attempt has been sent yet")
    if context.last_sent_attempt >= context.attempt_limit:
        return TransitionResult.reject(
            current, event.name, "All attempts are sent; no further follow-up is possible"
        )
    return TransitionResult.accept(current, S.FOLLOW_UP_DUE, event.name)


def _on_all_attempts_exhausted(
    current: ClientStatus, event: AllAttemptsExhausted, context: TransitionContext
) -> TransitionResult:
    if current == S.NO_CONTACT_OK_CLOSE:
        return TransitionResult.accept(current, current, event.name)
    if current not in _ATTEMPT_FOLLOW_ON_SOURCES:
        return TransitionResult.reject(
            current, event.name, f"Attempts cannot be exhausted while {current.value}"
        )
    if context.last_sent_attempt < context.attempt_limit:
        return TransitionResult.reject(
            current,
            event.name,
            f"Only {context.last_sent_attempt} of {context.attempt_limit} attempts sent",
        )
    return TransitionResult.accept(current, S.NO_CONTACT_OK_CLOSE, event.name)


def _on_staff_action(current: ClientStatus, event: StaffAction) -> TransitionResult:
    kind = event.kind
    name = event.name

    if kind == StaffActionKind.COMPLETE_EVALUATION:
        if current != S.PENDING_EVALUATION:
            return TransitionResult.reject(
                current, name, f"Evaluation can only be completed from pending_evaluation, not {current.value}"
            )
        target = S.EVALUATION_FLAGGED if event.payload.get("flagged") else S.EVALUATION_COMPLETE
        return TransitionResult.accept(current, target, name)

    if kind == StaffActionKind.CLOSE:
        target = _payload_status(event)
        if target is None or target not in CLOSED_STATUSES:
            return TransitionResult.reject(current, name, "Close requires a closed target status")
        if current in TERMINAL_STATUSES:
            return TransitionResult.reject(
                current, name, f"A {current.value} client cannot be closed"
            )
        return TransitionResult.accept(current, target, name)

    if kind == StaffActionKind.REOPEN:
        target = _payload_status(event)
        if current not in CLOSED_STATUSES:
            return TransitionResult.reject(
                current, name, f"Only closed clients can be reopened, not {current.value}"
            )
        if target is None:
            return TransitionResult.reject(current, name, "Reopen requires a target status")
        if target in CLOSED_STATUSES:
            return TransitionResult.reject(
                current, name, f"Cannot reopen to a closed status ({target.value})"
            )
        return TransitionResult.accept(current, target, name)

    sources, target = _STAFF_TRANSITIONS[kind]
    if current not in sources:
        return TransitionResult.reject(
            current, name, f"Action {kind.value} is not allowed while {current.value}"
        )
    return TransitionResult.accept(current, target, name)


def _payload_status(event: StaffAction) -> ClientStatus | None:
    raw = event.payload.get("target")
    if raw is None:
        return None
    try:
        return ClientStatus(raw)
    except ValueError:
        return None
