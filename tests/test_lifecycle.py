"""
Unit tests for LifecycleStore.

Tests focus on:
- legal and illegal status transitions
- compare-and-set behaviour on duplicate actions
- two-phase completion (confirm / rollback)
"""
import pytest

from conftest import make_reminder
from todo_reminder.core.lifecycle import LifecycleStore
from todo_reminder.datamodel import ReminderAction, ReminderStatus
from todo_reminder.errors import Conflict, InvalidTransition


@pytest.fixture
def store():
    store = LifecycleStore()
    store.add(make_reminder("todo-1"), handle="handle-1")
    return store


class TestTransitions:
    """Tests for LifecycleStore.transition"""

    def test_add_inserts_pending(self, store):
        reminder = store.get("todo-1")

        assert reminder.status == ReminderStatus.PENDING
        assert store.get_handle("todo-1") == "handle-1"
        assert [r.id for r in store.pending()] == ["todo-1"]

    def test_dismiss_removes_reminder(self, store):
        """Dismiss is terminal and removes the reminder"""
        status = store.transition("todo-1", ReminderAction.DISMISS)

        assert status == ReminderStatus.DISMISSED
        assert store.get("todo-1") is None

    def test_snooze_removes_reminder(self, store):
        status = store.transition("todo-1", ReminderAction.SNOOZE)

        assert status == ReminderStatus.SNOOZED
        assert "todo-1" not in store

    def test_action_after_dismiss_is_invalid(self, store):
        """Nothing leaves a terminal state"""
        store.transition("todo-1", ReminderAction.DISMISS)

        with pytest.raises(InvalidTransition) as exc_info:
            store.transition("todo-1", ReminderAction.COMPLETE)

        assert exc_info.value.current == ReminderStatus.DISMISSED
        assert len(store) == 0

    def test_unknown_id_is_invalid(self, store):
        with pytest.raises(InvalidTransition):
            store.transition("missing", ReminderAction.DISMISS)

    def test_accepts_plain_action_strings(self, store):
        assert store.transition("todo-1", "dismiss") == ReminderStatus.DISMISSED


class TestTwoPhaseCompletion:
    """Tests for provisional completion"""

    def test_complete_is_provisional(self, store):
        """Completion flips status locally but keeps tracking the reminder"""
        status = store.transition("todo-1", ReminderAction.COMPLETE)

        assert status == ReminderStatus.COMPLETED
        assert store.get("todo-1").status == ReminderStatus.COMPLETED
        assert store.is_provisional("todo-1")

    def test_duplicate_complete_conflicts(self, store):
        """Only the first of two rapid completions wins"""
        store.transition("todo-1", ReminderAction.COMPLETE)

        with pytest.raises(Conflict):
            store.transition("todo-1", ReminderAction.COMPLETE)
        with pytest.raises(Conflict):
            store.transition("todo-1", ReminderAction.DISMISS)

    def test_confirm_removes_reminder(self, store):
        store.transition("todo-1", ReminderAction.COMPLETE)
        attempt = store.attempt_of("todo-1")

        tracked = store.confirm("todo-1", attempt)

        assert tracked.reminder.id == "todo-1"
        assert tracked.handle == "handle-1"
        assert "todo-1" not in store
        assert not store.is_provisional("todo-1")
        with pytest.raises(InvalidTransition):
            store.transition("todo-1", ReminderAction.COMPLETE)

    def test_rollback_restores_pending(self, store):
        """A failed confirmation makes the reminder actionable again"""
        store.transition("todo-1", ReminderAction.COMPLETE)

        restored = store.rollback("todo-1")

        assert restored.status == ReminderStatus.PENDING
        assert not store.is_provisional("todo-1")
        assert store.transition("todo-1", ReminderAction.DISMISS) == ReminderStatus.DISMISSED

    def test_stale_attempt_is_ignored(self, store):
        """Results for an older attempt do not touch a newer one"""
        store.transition("todo-1", ReminderAction.COMPLETE)
        first = store.attempt_of("todo-1")
        store.rollback("todo-1", first)
        store.transition("todo-1", ReminderAction.COMPLETE)

        assert store.confirm("todo-1", first) is None
        assert store.is_provisional("todo-1")

    def test_confirm_after_removal_is_discarded(self, store):
        """Late results for untracked reminders are dropped"""
        store.transition("todo-1", ReminderAction.COMPLETE)
        attempt = store.attempt_of("todo-1")
        store.clear()

        assert store.confirm("todo-1", attempt) is None
        assert store.rollback("todo-1", attempt) is None

    def test_add_during_confirmation_conflicts(self, store):
        store.transition("todo-1", ReminderAction.COMPLETE)

        with pytest.raises(Conflict):
            store.add(make_reminder("todo-1"))


class TestHousekeeping:
    def test_add_same_id_replaces_previous(self, store):
        previous = store.add(make_reminder("todo-1", title="Updated"), handle="handle-2")

        assert previous.handle == "handle-1"
        assert store.get("todo-1").title == "Updated"
        assert len(store) == 1

    def test_clear_returns_removed(self, store):
        store.add(make_reminder("todo-2"))

        removed = store.clear()

        assert {t.reminder.id for t in removed} == {"todo-1", "todo-2"}
        assert len(store) == 0
