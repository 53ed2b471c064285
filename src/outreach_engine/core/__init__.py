"""Core utilities for the outreach engine."""

from outreach_engine.core.calendar import BusinessCalendar, Clock, FixedClock, SystemClock
from outreach_engine.core.exceptions import (
    OutreachEngineError,
    InvalidTransition,
    ConcurrentModification,
    RecordNotFoundError,
    ValidationError,
    DateMismatch,
    PastDateError,
    ClinicianRequired,
    CommunicationNoteRequired,
    ReopenReasonRequired,
    CloseAcknowledgementRequired,
    TransientIOError,
    MailboxError,
    StorageUnavailableError,
    ConfigurationError,
)
from outreach_engine.core.locks import KeyedLock
from outreach_engine.core.log_setup import get_logger, setup_logging

__all__ = [
    # Time
    "BusinessCalendar",
    "Clock",
    "FixedClock",
    "SystemClock",
    # Concurrency
    "KeyedLock",
    # Logging
    "get_logger",
    "setup_logging",
    # Exceptions
    "OutreachEngineError",
    "InvalidTransition",
    "ConcurrentModification",
    "RecordNotFoundError",
    "ValidationError",
    "DateMismatch",
    "PastDateError",
    "ClinicianRequired",
    "CommunicationNoteRequired",
    "ReopenReasonRequired",
    "CloseAcknowledgementRequired",
    "TransientIOError",
    "MailboxError",
    "StorageUnavailableError",
    "ConfigurationError",
]
