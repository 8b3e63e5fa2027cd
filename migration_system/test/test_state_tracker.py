"""
Tests for StateTracker history records, drift checks and the run lock.
"""

import pytest

from migration_system.discovery import ScriptUnit, UnitKind
from migration_system.error_handling import (
    DriftError,
    LockContentionError,
    StateConflictError,
)
from migration_system.state import Outcome, SchemaState, StateTracker


def make_unit(version="1.0", sequence="001", script="CREATE TABLE t (id INTEGER PRIMARY KEY);"):
    return ScriptUnit(
        version=version,
        sequence=sequence,
        description="test unit",
        kind=UnitKind.DDL,
        up_script=script,
        source_name=f"V{version}_{sequence}__test_unit.sql",
    )


@pytest.fixture
def tracker(sqlite_url):
    state_tracker = StateTracker(sqlite_url, executed_by="tester@localhost")
    yield state_tracker
    state_tracker.dispose()


class TestHistory:
    """Test recording and loading history."""

    def test_empty_history(self, tracker):
        state = tracker.load()

        assert state.history == []
        assert state.current_version is None
        assert state.current_key is None

    def test_record_success(self, tracker):
        unit = make_unit()

        record = tracker.record(unit, Outcome.SUCCESS, duration_ms=12)

        assert record.record_id is not None
        assert record.unit_id == "1.0-001"
        assert record.checksum == unit.checksum
        assert record.executed_by == "tester@localhost"
        state = tracker.load()
        assert state.current_version == "1.0-001"
        assert state.is_applied("1.0-001")
        assert state.history[0].duration_ms == 12

    def test_current_version_follows_key_order(self, tracker):
        """Current version is the highest applied key, not the latest insert."""
        tracker.record(make_unit("1.10"), Outcome.SUCCESS)
        tracker.record(make_unit("1.2"), Outcome.SUCCESS)

        state = tracker.load()

        assert state.current_version == "1.10-001"
        assert [r.unit_id for r in state.applied] == ["1.2-001", "1.10-001"]

    def test_failed_record_is_not_applied(self, tracker):
        tracker.record(make_unit(), Outcome.FAILED, error_message="boom")

        state = tracker.load()

        assert not state.is_applied("1.0-001")
        assert state.failed[0].error_message == "boom"

    def test_duplicate_success_is_refused(self, tracker):
        unit = make_unit()
        tracker.record(unit, Outcome.SUCCESS)

        with pytest.raises(StateConflictError):
            tracker.record(unit, Outcome.SUCCESS)

    def test_success_with_new_checksum_is_drift(self, tracker):
        tracker.record(make_unit(), Outcome.SUCCESS)

        with pytest.raises(DriftError) as exc_info:
            tracker.record(make_unit(script="CREATE TABLE t2 (id INTEGER PRIMARY KEY);"), Outcome.SUCCESS)

        assert exc_info.value.drifted == ["1.0-001"]

    def test_tombstone_then_reapply(self, tracker):
        """A ROLLED_BACK record makes the unit applicable again."""
        unit = make_unit()
        record = tracker.record(unit, Outcome.SUCCESS)

        tombstone = tracker.tombstone(record, duration_ms=3)
        assert tombstone.outcome is Outcome.ROLLED_BACK
        assert not tracker.load().is_applied(unit.unit_id)

        tracker.record(unit, Outcome.SUCCESS)
        state = tracker.load()
        assert state.is_applied(unit.unit_id)
        assert len(state.history) == 3

    def test_check_drift(self, tracker):
        original = make_unit()
        tracker.record(original, Outcome.SUCCESS)
        state = tracker.load()

        tracker.check_drift([original], state)
        with pytest.raises(DriftError):
            tracker.check_drift([make_unit(script="SELECT 1;")], state)

    def test_custom_table_name(self, sqlite_url):
        custom = StateTracker(sqlite_url, history_table="my_history", lock_table="my_lock")
        custom.record(make_unit(), Outcome.SUCCESS)

        assert custom.load().current_version == "1.0-001"
        assert StateTracker(sqlite_url).load().history == []


class TestSchemaState:
    """Test state derived from history."""

    def test_latest_record_wins(self, tracker):
        unit = make_unit()
        record = tracker.record(unit, Outcome.SUCCESS)
        tracker.tombstone(record)

        state = tracker.load()

        assert state.latest["1.0-001"].outcome is Outcome.ROLLED_BACK
        assert state.applied == []

    def test_to_dict(self):
        state = SchemaState()

        assert state.to_dict() == {
            "current_version": None,
            "applied": [],
            "failed": [],
            "history_length": 0,
        }


class TestLock:
    """Test the single-row run lock."""

    def test_acquire_and_release(self, tracker):
        token = tracker.acquire_lock("runner-1")

        holder = tracker.lock_holder()
        assert holder["owner"] == "runner-1"
        assert holder["token"] == token

        assert tracker.release_lock(token) is True
        assert tracker.lock_holder() is None

    def test_second_owner_is_refused(self, tracker, sqlite_url):
        other = StateTracker(sqlite_url)
        tracker.acquire_lock("runner-1")

        with pytest.raises(LockContentionError) as exc_info:
            other.acquire_lock("runner-2")

        assert exc_info.value.holder == "runner-1"

    def test_release_with_wrong_token(self, tracker):
        tracker.acquire_lock("runner-1")

        assert tracker.release_lock("not-the-token") is False
        assert tracker.lock_holder() is not None

    def test_force_release(self, tracker):
        tracker.acquire_lock("runner-1")

        holder = tracker.force_release_lock()

        assert holder["owner"] == "runner-1"
        assert tracker.lock_holder() is None

    def test_locked_context_manager_releases_on_error(self, tracker):
        with pytest.raises(ValueError):
            with tracker.locked("runner-1"):
                assert tracker.lock_holder()["owner"] == "runner-1"
                raise ValueError("boom")

        assert tracker.lock_holder() is None
