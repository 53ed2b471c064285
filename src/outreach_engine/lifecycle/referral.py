"""Referral and closure rules.

Closing needs evidence that the client was contacted: a sent referral
email, or all outreach attempts sent (``no_contact_ok_close``).
Without either, staff must acknowledge closing anyway; no client is
dropped silently.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from outreach_engine.config import OutreachSettings
from outreach_engine.core.exceptions import (
    CloseAcknowledgementRequired,
    InvalidTransition,
    ReopenReasonRequired,
    ValidationError,
)
from outreach_engine.domain.models import Client, ReopenHistoryEntry
from outreach_engine.domain.status import (
    CLOSED_STATUSES,
    TERMINAL_STATUSES,
    ClientStatus,
    ClosedWorkflow,
)

REFERRAL_SENT = "referral_sent"
CLOSED_WITHOUT_REFERRAL = "closed_without_referral"
CLOSED_NO_CONTACT = "closed_no_contact"

# Closed reason -> status
CLOSE_TARGETS: dict[str, ClientStatus] = {
    REFERRAL_SENT: ClientStatus.REFERRED,
    CLOSED_NO_CONTACT: ClientStatus.CLOSED_NO_CONTACT,
    CLOSED_WITHOUT_REFERRAL: ClientStatus.CLOSED_OTHER,
}


def close_target(reason: str) -> ClientStatus:
    """Closed status for a closure reason; unknown reasons close as other."""
    return CLOSE_TARGETS.get(reason, ClientStatus.CLOSED_OTHER)


@dataclass
class ClinicSelection:
    """Clinics picked for a referral email that is not sent yet."""

    client_id: str
    clinics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {"client_id": self.client_id, "clinics": list(self.clinics)}


@dataclass(frozen=True)
class ClosePlan:
    """Validated closure: reason, target and workflow tag."""

    reason: str
    target: ClientStatus
    workflow: ClosedWorkflow


def _clean_names(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    cleaned = []
    for name in names:
        name = name.strip()
        if name and name.lower() not in seen:
            seen.add(name.lower())
            cleaned.append(name)
    return cleaned


class ReferralClosureManager:
    """Referral composition, close and reopen rules."""

    def __init__(self, settings: OutreachSettings) -> None:
        self.settings = settings

    # ========================================================================
    # Referral
    # ========================================================================

    def select_clinics(self, client_id: str, clinics: Iterable[str]) -> ClinicSelection:
        return ClinicSelection(client_id=client_id, clinics=_clean_names(clinics))

    def apply_referral_sent(self, client: Client, clinic_names: Iterable[str], sent_at: datetime) -> None:
        """Record the referral email on the client. Status is untouched."""
        names = _clean_names(clinic_names)
        if not names:
            raise ValidationError(
                "At least one clinic is required for a referral",
                details={"client_id": client.id},
            )
        client.referral_email_sent_at = sent_at
        client.referral_clinic_names = names

    # ========================================================================
    # Close
    # ========================================================================

    def plan_close(
        self,
        client: Client,
        reason: str | None = None,
        workflow: ClosedWorkflow | str | None = None,
        acknowledged: bool = False,
    ) -> ClosePlan:
        """Validate a closure before anything is mutated.

        Raises:
            InvalidTransition: If the client is already terminal
            ValidationError: If ``referral_sent`` is claimed without a referral
            CloseAcknowledgementRequired: If nothing was sent and the
                caller did not acknowledge closing anyway
        """
        if client.status in TERMINAL_STATUSES:
            raise InvalidTransition(
                f"A {client.status.value} client cannot be closed",
                current_status=client.status.value,
                event="close",
            )

        referral_sent = client.referral_email_sent_at is not None
        attempts_exhausted = client.status == ClientStatus.NO_CONTACT_OK_CLOSE

        if reason is None:
            if referral_sent:
                reason = REFERRAL_SENT
            elif attempts_exhausted:
                reason = CLOSED_NO_CONTACT
            else:
                reason = CLOSED_WITHOUT_REFERRAL

        if reason == REFERRAL_SENT and not referral_sent:
            raise ValidationError(
                "No referral email was recorded for this client",
                details={"client_id": client.id, "reason": reason},
            )

        if not (referral_sent or attempts_exhausted or acknowledged):
            raise CloseAcknowledgementRequired(
                "No referral or outreach was completed; confirm closing anyway",
                details={"client_id": client.id, "status": client.status.value},
            )

        if workflow is None:
            workflow = ClosedWorkflow.REFERRAL if reason == REFERRAL_SENT else ClosedWorkflow.OTHER

        return ClosePlan(
            reason=reason,
            target=close_target(reason),
            workflow=ClosedWorkflow(workflow),
        )

    @staticmethod
    def apply_close(client: Client, plan: ClosePlan, now: datetime) -> None:
        """Stamp closure metadata. Captures the status before it changes."""
        client.closed_from_status = client.status
        client.closed_date = now
        client.closed_reason = plan.reason
        client.closed_from_workflow = plan.workflow

    # ========================================================================
    # Reopen
    # ========================================================================

    def check_reopen(self, client: Client, target: ClientStatus, reason: str | None) -> str:
        """Validate a reopen and return the cleaned reason.

        Raises:
            ReopenReasonRequired: If the reason is shorter than configured
            InvalidTransition: If the client is not closed or the target is
        """
        cleaned = (reason or "").strip()
        minimum = self.settings.reopen_reason_min_length
        if len(cleaned) < minimum:
            raise ReopenReasonRequired(
                f"Reopen reason must be at least {minimum} characters",
                details={"client_id": client.id, "length": len(cleaned)},
            )
        if client.status not in CLOSED_STATUSES:
            raise InvalidTransition(
                f"Only closed clients can be reopened, not {client.status.value}",
                current_status=client.status.value,
                event="reopen",
            )
        if target in CLOSED_STATUSES:
            raise InvalidTransition(
                f"Cannot reopen to a closed status ({target.value})",
                current_status=client.status.value,
                event="reopen",
            )
        return cleaned

    @staticmethod
    def build_reopen_entry(
        client: Client,
        target: ClientStatus,
        reason: str,
        actor: str,
        now: datetime,
    ) -> ReopenHistoryEntry:
        return ReopenHistoryEntry(
            client_id=client.id,
            previous_status=client.status,
            new_status=target,
            reopen_reason=reason,
            reopened_by=actor,
            reopened_at=now,
            closed_date=client.closed_date,
            closed_reason=client.closed_reason,
            closed_from_workflow=client.closed_from_workflow,
        )

    @staticmethod
    def clear_closure(client: Client) -> None:
        client.closed_date = None
        client.closed_reason = None
        client.closed_from_workflow = None
        client.closed_from_status = None
