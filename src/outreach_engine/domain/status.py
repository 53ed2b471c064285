"""Client lifecycle status.

One enum for every status the engine understands, plus a versioned
mapping from the legacy per-attempt statuses that older records may
still carry.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ClientStatus(str, Enum):
    """Lifecycle status of a prospective client."""

    # Intake
    NEW = "new"
    PENDING_EVALUATION = "pending_evaluation"
    EVALUATION_COMPLETE = "evaluation_complete"
    EVALUATION_FLAGGED = "evaluation_flagged"

    # Outreach
    PENDING_OUTREACH = "pending_outreach"
    AWAITING_RESPONSE = "awaiting_response"
    FOLLOW_UP_DUE = "follow_up_due"
    NO_CONTACT_OK_CLOSE = "no_contact_ok_close"
    IN_COMMUNICATION = "in_communication"

    # Scheduling
    READY_TO_SCHEDULE = "ready_to_schedule"
    AWAITING_SCHEDULING = "awaiting_scheduling"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"

    # Referral
    PENDING_REFERRAL = "pending_referral"
    REFERRED = "referred"

    # Closed
    CLOSED_NO_CONTACT = "closed_no_contact"
    CLOSED_OTHER = "closed_other"
    DUPLICATE = "duplicate"


class ClosedWorkflow(str, Enum):
    """Functional area that triggered a closure (reporting tag)."""

    EVALUATION = "evaluation"
    OUTREACH = "outreach"
    REFERRAL = "referral"
    SCHEDULING = "scheduling"
    OTHER = "other"


CLOSED_STATUSES: frozenset[ClientStatus] = frozenset({
    ClientStatus.CLOSED_NO_CONTACT,
    ClientStatus.CLOSED_OTHER,
    ClientStatus.REFERRED,
    ClientStatus.DUPLICATE,
})

TERMINAL_STATUSES: frozenset[ClientStatus] = CLOSED_STATUSES | {
    ClientStatus.SCHEDULED,
    ClientStatus.COMPLETED,
}

# Statuses in which outreach attempts are tracked and replies are polled
OUTREACH_STATUSES: frozenset[ClientStatus] = frozenset({
    ClientStatus.PENDING_OUTREACH,
    ClientStatus.AWAITING_RESPONSE,
    ClientStatus.FOLLOW_UP_DUE,
    ClientStatus.NO_CONTACT_OK_CLOSE,
})

# Statuses the reply monitor watches (at least one attempt is out)
REPLY_WATCH_STATUSES: frozenset[ClientStatus] = frozenset({
    ClientStatus.AWAITING_RESPONSE,
    ClientStatus.FOLLOW_UP_DUE,
    ClientStatus.NO_CONTACT_OK_CLOSE,
})

# Statuses from which a confirmed appointment may be recorded
SCHEDULABLE_STATUSES: frozenset[ClientStatus] = frozenset({
    ClientStatus.PENDING_OUTREACH,
    ClientStatus.AWAITING_RESPONSE,
    ClientStatus.FOLLOW_UP_DUE,
    ClientStatus.NO_CONTACT_OK_CLOSE,
    ClientStatus.IN_COMMUNICATION,
    ClientStatus.READY_TO_SCHEDULE,
    ClientStatus.AWAITING_SCHEDULING,
})


def is_closed(status: ClientStatus) -> bool:
    return status in CLOSED_STATUSES


def is_terminal(status: ClientStatus) -> bool:
    return status in TERMINAL_STATUSES


# =============================================================================
# Legacy status migration
# =============================================================================

LEGACY_STATUS_MAP_VERSION = 1

# legacy value -> (status, attempts implied to be sent)
LEGACY_STATUS_MAP: dict[str, tuple[ClientStatus, int | None]] = {
    "outreach_sent": (ClientStatus.AWAITING_RESPONSE, 1),
    "follow_up_1": (ClientStatus.AWAITING_RESPONSE, 2),
    "follow_up_2": (ClientStatus.AWAITING_RESPONSE, 3),
    "replied": (ClientStatus.IN_COMMUNICATION, None),
}


@dataclass(frozen=True)
class StatusMigration:
    """Result of parsing a stored status string."""

    status: ClientStatus
    legacy_value: str | None = None
    implied_attempts_sent: int | None = None
    map_version: int = LEGACY_STATUS_MAP_VERSION

    @property
    def migrated(self) -> bool:
        return self.legacy_value is not None


def parse_status(value: str | ClientStatus) -> StatusMigration:
    """Parse a stored status, translating legacy values explicitly.

    Raises:
        ValueError: If the value is neither a current nor a legacy status
    """
    if isinstance(value, ClientStatus):
        return StatusMigration(status=value)

    normalized = value.strip().lower()
    try:
        return StatusMigration(status=ClientStatus(normalized))
    except ValueError:
        pass

    if normalized in LEGACY_STATUS_MAP:
        status, implied = LEGACY_STATUS_MAP[normalized]
        return StatusMigration(
            status=status,
            legacy_value=normalized,
            implied_attempts_sent=implied,
        )

    raise ValueError(f"Unknown client status: {value!r}")
