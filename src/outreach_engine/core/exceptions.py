"""Outreach Engine Exception Hierarchy.

Provides structured error handling with context preservation
and HTTP status code mapping. Every error is scoped to a single
client operation; nothing here is fatal to the engine as a whole.
"""

from __future__ import annotations

from typing import Any


class OutreachEngineError(Exception):
    """Base exception for all Outreach Engine errors.

    Provides:
    - Structured error context
    - HTTP status code mapping
    - Logging-friendly representation
    """

    status_code: int = 500
    error_code: str = "OUTREACH_ENGINE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Additional context for debugging
            cause: Original exception if wrapping
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-friendly dictionary."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        """String representation for logging."""
        parts = [f"{self.error_code}: {self.message}"]
        if self.details:
            parts.append(f"details={self.details}")
        if self.cause:
            parts.append(f"cause={self.cause}")
        return " | ".join(parts)


# =============================================================================
# Lifecycle Errors
# =============================================================================


class InvalidTransition(OutreachEngineError):
    """Illegal (status, event) pair. Nothing was mutated."""

    status_code = 409
    error_code = "INVALID_TRANSITION"

    def __init__(
        self,
        message: str,
        *,
        current_status: str | None = None,
        event: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        if current_status is not None:
            merged["current_status"] = current_status
        if event is not None:
            merged["event"] = event
        super().__init__(message, details=merged)
        self.current_status = current_status
        self.event = event


class ConcurrentModification(OutreachEngineError):
    """Stale version on write. Caller must reload and retry."""

    status_code = 409
    error_code = "CONCURRENT_MODIFICATION"


class RecordNotFoundError(OutreachEngineError):
    """Requested record not found."""

    status_code = 404
    error_code = "RECORD_NOT_FOUND"


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(OutreachEngineError):
    """Input validation failed before any mutation."""

    status_code = 422
    error_code = "VALIDATION_ERROR"


class DateMismatch(ValidationError):
    """Start date weekday does not match the proposed day."""

    error_code = "DATE_MISMATCH"


class PastDateError(ValidationError):
    """Start date lies in the past."""

    error_code = "PAST_DATE"


class ClinicianRequired(ValidationError):
    """Offered slot lists several clinicians and none was chosen."""

    error_code = "CLINICIAN_REQUIRED"


class CommunicationNoteRequired(ValidationError):
    """Out-of-band scheduling without a written justification."""

    error_code = "COMMUNICATION_NOTE_REQUIRED"


class ReopenReasonRequired(ValidationError):
    """Reopen reason missing or too short."""

    error_code = "REOPEN_REASON_REQUIRED"


class CloseAcknowledgementRequired(ValidationError):
    """Closing without any communication needs an explicit acknowledgement."""

    error_code = "CLOSE_ACKNOWLEDGEMENT_REQUIRED"


# =============================================================================
# Transient I/O Errors
# =============================================================================


class TransientIOError(OutreachEngineError):
    """External collaborator unavailable. Retried on the next tick."""

    status_code = 503
    error_code = "TRANSIENT_IO_ERROR"


class MailboxError(TransientIOError):
    """Mailbox listing or sending failed."""

    error_code = "MAILBOX_ERROR"


class StorageUnavailableError(TransientIOError):
    """Persistence layer unavailable or timed out."""

    error_code = "STORAGE_UNAVAILABLE"


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(OutreachEngineError):
    """Settings outside their documented range or enum."""

    status_code = 500
    error_code = "CONFIGURATION_ERROR"


# =============================================================================
# Utility Functions
# =============================================================================


def wrap_exception(
    exc: Exception,
    wrapper_class: type[OutreachEngineError] = OutreachEngineError,
    message: str | None = None,
    **details: Any,
) -> OutreachEngineError:
    """Wrap a generic exception in an OutreachEngineError.

    Args:
        exc: Original exception to wrap
        wrapper_class: OutreachEngineError subclass to use
        message: Override message (defaults to str(exc))
        **details: Additional context details

    Returns:
        Wrapped OutreachEngineError instance
    """
    return wrapper_class(
        message=message or str(exc),
        details=details or None,
        cause=exc,
    )
