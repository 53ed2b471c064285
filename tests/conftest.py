"""Pytest configuration and fixtures for Outreach Engine tests."""

from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest
import pytest_asyncio

# Set test environment
os.environ["OUTREACH_ENV"] = "test"
os.environ["OUTREACH_DATABASE__URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["OUTREACH_POLLER_ENABLED"] = "false"

# Monday 2025-01-06 09:00 UTC
MONDAY_9AM = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def outreach_settings():
    """Default outreach settings with fast I/O bounds."""
    from outreach_engine.config import OutreachSettings

    return OutreachSettings(mailbox_timeout_seconds=2.0, storage_timeout_seconds=2.0)


@pytest.fixture
def clock():
    """Fixed clock starting Monday 9am UTC."""
    from outreach_engine.core.calendar import FixedClock

    return FixedClock(MONDAY_9AM)


@pytest.fixture
def calendar():
    from outreach_engine.core.calendar import BusinessCalendar

    return BusinessCalendar()


@pytest.fixture
def store():
    from outreach_engine.storage.memory import InMemoryClientStore

    return InMemoryClientStore()


@pytest.fixture
def mailbox():
    from outreach_engine.integrations.mailbox.memory import InMemoryMailbox

    return InMemoryMailbox()


@pytest.fixture
def engine(store, mailbox, outreach_settings, clock, calendar):
    """Engine over in-memory store and mailbox. Timers are not armed."""
    from outreach_engine.lifecycle.engine import OutreachEngine

    return OutreachEngine(store, mailbox, outreach_settings, clock=clock, calendar=calendar)


@pytest.fixture
def make_client(engine):
    """Create a client and optionally walk it to ``pending_outreach``."""
    from outreach_engine.domain.events import StaffAction, StaffActionKind
    from outreach_engine.domain.models import Client

    async def _make(
        name: str = "Jane Doe",
        email: str = "jane@example.com",
        ready_for_outreach: bool = True,
    ) -> Client:
        client = await engine.create_client(Client(name=name, email=email))
        if ready_for_outreach:
            for kind in (
                StaffActionKind.SUBMIT_FOR_EVALUATION,
                StaffActionKind.COMPLETE_EVALUATION,
                StaffActionKind.APPROVE_FOR_OUTREACH,
            ):
                result = await engine.transition(client.id, StaffAction(kind))
                assert result.accepted, result.reason
        return await engine.get_client(client.id)

    return _make


@pytest.fixture
def send_attempt(engine):
    """Create and mark attempt ``n`` sent at ``sent_at``."""

    async def _send(client_id: str, n: int, sent_at: datetime):
        attempt = await engine.create_attempt(client_id, n)
        return await engine.mark_sent(attempt.id, sent_at, message_id=f"<out-{n}@clinic.test>")

    return _send


# ============================================================================
# Async Database Fixtures
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """In-memory SQLite engine with all tables created.

    Creates a fresh database for each test function.
    """
    from outreach_engine.db.session import create_test_engine

    engine = await create_test_engine()
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from outreach_engine.db.session import get_test_session_factory

    return get_test_session_factory(db_engine)


@pytest.fixture
def sql_store(session_factory):
    from outreach_engine.db.store import SqlClientStore

    return SqlClientStore(session_factory)
