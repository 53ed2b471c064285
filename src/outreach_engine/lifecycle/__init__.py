"""Outreach lifecycle: state machine, attempts, replies, closure, scheduling."""

from outreach_engine.lifecycle.attempts import (
    AttemptTracker,
    attempt_plan,
    evaluate_dueness,
    next_follow_up_due,
    response_window_end,
)
from outreach_engine.lifecycle.engine import OutreachEngine
from outreach_engine.lifecycle.poller import PollerMetrics, PollerState, ReplyPoller
from outreach_engine.lifecycle.referral import (
    ClinicSelection,
    ClosePlan,
    ReferralClosureManager,
    close_target,
)
from outreach_engine.lifecycle.replies import (
    DetectedReply,
    MonitorStatus,
    ReplyCheckReport,
    ReplyMonitor,
)
from outreach_engine.lifecycle.scheduling import (
    ScheduleRequest,
    ScheduleValidation,
    SchedulingValidator,
    earliest_start_date,
)
from outreach_engine.lifecycle.state_machine import require, transition
from outreach_engine.lifecycle.timers import FollowUpTimers

__all__ = [
    # State machine
    "transition",
    "require",
    # Attempts
    "AttemptTracker",
    "attempt_plan",
    "evaluate_dueness",
    "next_follow_up_due",
    "response_window_end",
    # Replies
    "DetectedReply",
    "MonitorStatus",
    "ReplyCheckReport",
    "ReplyMonitor",
    "ReplyPoller",
    "PollerMetrics",
    "PollerState",
    # Referral and closure
    "ClinicSelection",
    "ClosePlan",
    "ReferralClosureManager",
    "close_target",
    # Scheduling
    "ScheduleRequest",
    "ScheduleValidation",
    "SchedulingValidator",
    "earliest_start_date",
    # Timers
    "FollowUpTimers",
    # Facade
    "OutreachEngine",
]
