"""Domain types for the outreach lifecycle."""

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
    AttemptType,
    Client,
    Dueness,
    OfferedSlot,
    OutreachAttempt,
    Recurrence,
    ReopenHistoryEntry,
    ScheduledAppointment,
    StatusHistoryEntry,
    Weekday,
)
from outreach_engine.domain.status import (
    CLOSED_STATUSES,
    LEGACY_STATUS_MAP,
    LEGACY_STATUS_MAP_VERSION,
    OUTREACH_STATUSES,
    REPLY_WATCH_STATUSES,
    SCHEDULABLE_STATUSES,
    TERMINAL_STATUSES,
    ClientStatus,
    ClosedWorkflow,
    StatusMigration,
    is_closed,
    is_terminal,
    parse_status,
)

__all__ = [
    # Status
    "ClientStatus",
    "ClosedWorkflow",
    "CLOSED_STATUSES",
    "TERMINAL_STATUSES",
    "OUTREACH_STATUSES",
    "REPLY_WATCH_STATUSES",
    "SCHEDULABLE_STATUSES",
    "LEGACY_STATUS_MAP",
    "LEGACY_STATUS_MAP_VERSION",
    "StatusMigration",
    "is_closed",
    "is_terminal",
    "parse_status",
    # Models
    "AttemptStatus",
    "AttemptType",
    "Client",
    "Dueness",
    "OfferedSlot",
    "OutreachAttempt",
    "Recurrence",
    "ReopenHistoryEntry",
    "ScheduledAppointment",
    "StatusHistoryEntry",
    "Weekday",
    # Events
    "AllAttemptsExhausted",
    "AttemptSent",
    "FollowUpDue",
    "LifecycleEvent",
    "ReplyDetected",
    "StaffAction",
    "StaffActionKind",
    "TransitionContext",
    "TransitionResult",
]
