"""Tests for the status model and legacy migration."""

import pytest

from outreach_engine.domain.status import (
    CLOSED_STATUSES,
    LEGACY_STATUS_MAP_VERSION,
    TERMINAL_STATUSES,
    ClientStatus,
    is_closed,
    is_terminal,
    parse_status,
)


class TestStatusSets:
    """Closed and terminal status groups."""

    def test_closed_statuses(self):
        assert CLOSED_STATUSES == {
            ClientStatus.CLOSED_NO_CONTACT,
            ClientStatus.CLOSED_OTHER,
            ClientStatus.REFERRED,
            ClientStatus.DUPLICATE,
        }

    def test_terminal_includes_scheduled_and_completed(self):
        assert ClientStatus.SCHEDULED in TERMINAL_STATUSES
        assert ClientStatus.COMPLETED in TERMINAL_STATUSES
        assert CLOSED_STATUSES <= TERMINAL_STATUSES

    def test_helpers(self):
        assert is_closed(ClientStatus.REFERRED)
        assert not is_closed(ClientStatus.SCHEDULED)
        assert is_terminal(ClientStatus.SCHEDULED)
        assert not is_terminal(ClientStatus.IN_COMMUNICATION)


class TestParseStatus:
    """Stored status parsing."""

    def test_current_value(self):
        migration = parse_status("awaiting_response")
        assert migration.status == ClientStatus.AWAITING_RESPONSE
        assert not migration.migrated

    def test_enum_passthrough(self):
        assert parse_status(ClientStatus.NEW).status == ClientStatus.NEW

    @pytest.mark.parametrize(
        "legacy, status, implied",
        [
            ("outreach_sent", ClientStatus.AWAITING_RESPONSE, 1),
            ("follow_up_1", ClientStatus.AWAITING_RESPONSE, 2),
            ("follow_up_2", ClientStatus.AWAITING_RESPONSE, 3),
            ("replied", ClientStatus.IN_COMMUNICATION, None),
        ],
    )
    def test_legacy_values_are_mapped_explicitly(self, legacy, status, implied):
        migration = parse_status(legacy)
        assert migration.migrated
        assert migration.status == status
        assert migration.legacy_value == legacy
        assert migration.implied_attempts_sent == implied
        assert migration.map_version == LEGACY_STATUS_MAP_VERSION

    def test_case_and_whitespace_are_normalized(self):
        assert parse_status("  Outreach_Sent ").status == ClientStatus.AWAITING_RESPONSE

    def test_unknown_value_raises(self):
        with pytest.raises(ValueError):
            parse_status("contacted_maybe")
