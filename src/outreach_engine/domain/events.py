"""Lifecycle events and transition results."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from outreach_engine.domain.status import ClientStatus


class StaffActionKind(str, Enum):
    """Staff-driven lifecycle actions."""

    SUBMIT_FOR_EVALUATION = "submit_for_evaluation"
    COMPLETE_EVALUATION = "complete_evaluation"
    APPROVE_FOR_OUTREACH = "approve_for_outreach"
    REFER = "refer"
    READY_TO_SCHEDULE = "ready_to_schedule"
    AWAIT_SCHEDULING = "await_scheduling"
    SCHEDULE = "schedule"
    COMPLETE = "complete"
    MARK_DUPLICATE = "mark_duplicate"
    CLOSE = "close"
    REOPEN = "reopen"


@dataclass(frozen=True)
class AttemptSent:
    """Outreach attempt ``attempt_number`` went out."""

    attempt_number: int

    @property
    def name(self) -> str:
        return f"attempt_sent({self.attempt_number})"


@dataclass(frozen=True)
class ReplyDetected:
    """An inbound message from the client was observed."""

    message_id: str | None = None
    thread_id: str | None = None
    attempt_number: int | None = None

    @property
    def name(self) -> str:
        return "reply_detected"


@dataclass(frozen=True)
class FollowUpDue:
    """Response window of the latest attempt elapsed with attempts left."""

    @property
    def name(self) -> str:
        return "follow_up_due"


@dataclass(frozen=True)
class AllAttemptsExhausted:
    """Final attempt's window elapsed without a reply."""

    @property
    def name(self) -> str:
        return "all_attempts_exhausted"


@dataclass(frozen=True)
class StaffAction:
    """Explicit staff action with an optional payload."""

    kind: StaffActionKind
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.kind.value


LifecycleEvent = Union[AttemptSent, ReplyDetected, FollowUpDue, AllAttemptsExhausted, StaffAction]


@dataclass(frozen=True)
class TransitionContext:
    """Attempt facts the transition function needs besides the status."""

    last_sent_attempt: int = 0
    attempt_limit: int = 3


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of applying an event.

    On rejection ``status`` is the unchanged current status and
    ``reason`` says why.
    """

    accepted: bool
    status: ClientStatus
    previous_status: ClientStatus
    event: str
    reason: str | None = None

    @classmethod
    def accept(cls, previous: ClientStatus, new: ClientStatus, event: str) -> "TransitionResult":
        return cls(accepted=True, status=new, previous_status=previous, event=event)

    @classmethod
    def reject(cls, current: ClientStatus, event: str, reason: str) -> "TransitionResult":
        return cls(
            accepted=False,
            status=current,
            previous_status=current,
            event=event,
            reason=reason,
        )

    @property
    def rejected(self) -> bool:
        return not self.accepted

    @property
    def changed(self) -> bool:
        return self.accepted and self.status != self.previous_status

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "accepted": self.accepted,
            "status": self.status.value,
            "previous_status": self.previous_status.value,
            "event": self.event,
            "reason": self.reason,
        }
