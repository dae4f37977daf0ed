"""
Unit tests for inbound message normalization.

Tests focus on:
- v2 / v1 decoding and field remapping
- content fallback chain
- kind based priority overrides
- legacy free text fallback
"""
import json
from datetime import datetime, timezone

import pytest

from todo_reminder.core.normalizer import (
    DEFAULT_TITLE,
    DebugCapture,
    MessageNormalizer,
    decode,
)
from todo_reminder.datamodel import Priority, ReminderKind
from todo_reminder.errors import InvalidType, NormalizationError, UnknownReminderKind

T0 = "2026-03-15T18:00:00Z"


def v2_payload(**data):
    return {
        "version": "2.0",
        "type": "TODO_REMINDER",
        "reminderType": "normal",
        "priority": "low",
        "data": {"todoId": "todo-42", **data},
        "metadata": {"agentName": "Planner"},
    }


@pytest.fixture
def normalizer():
    return MessageNormalizer(tz=timezone.utc)


class TestDecode:
    """Tests for the tagged decoding step"""

    def test_v2_payload_is_remapped(self):
        """Nested v2 fields land on canonical names"""
        payload = decode(v2_payload(title="Pay invoice", deadline=T0, tags=["finance"]))

        assert payload.wire == "v2"
        assert payload.todo_id == "todo-42"
        assert payload.title == "Pay invoice"
        assert payload.scheduled_time == T0
        assert payload.agent_name == "Planner"
        assert payload.tags == ["finance"]

    def test_v1_payload_is_accepted_directly(self):
        """Canonical top-level fields need no remapping"""
        payload = decode({
            "type": "TODO_REMINDER",
            "reminderType": "daily_summary",
            "todoId": "t-1",
            "message": "hello",
        })

        assert payload.wire == "v1"
        assert payload.kind == ReminderKind.DAILY_SUMMARY
        assert payload.message == "hello"

    def test_json_text_is_decoded(self):
        """Raw JSON strings are parsed before decoding"""
        payload = decode(json.dumps(v2_payload(title="From text")))

        assert payload.title == "From text"

    def test_v2_metadata_is_optional(self):
        raw = v2_payload(title="No agent")
        del raw["metadata"]

        payload = decode(raw)

        assert payload.wire == "v2"
        assert payload.todo_id == "todo-42"
        assert payload.agent_name is None

    def test_wrong_type_raises_invalid_type(self):
        """A discriminant other than TODO_REMINDER is rejected"""
        with pytest.raises(InvalidType):
            decode({"type": "CHAT_MESSAGE", "content": "hi"})

    def test_unknown_kind_raises(self):
        """reminderType outside the known set is rejected"""
        with pytest.raises(UnknownReminderKind):
            decode({"type": "TODO_REMINDER", "reminderType": "weekly_digest"})

    def test_free_text_raises_normalization_error(self):
        """Plain text is not a structured message"""
        with pytest.raises(NormalizationError):
            decode("just some words")

    def test_missing_type_raises_normalization_error(self):
        """A dict with no discriminant matches neither schema"""
        with pytest.raises(NormalizationError):
            decode({"content": "no type here"})


class TestNormalize:
    """Tests for MessageNormalizer.normalize"""

    def test_overdue_v2_forces_high_priority(self, normalizer):
        """Overdue reminders are always high priority"""
        raw = {
            "version": "2.0",
            "type": "TODO_REMINDER",
            "reminderType": "overdue",
            "priority": "medium",
            "data": {"title": "Pay invoice", "deadline": T0},
            "metadata": {"agentName": "Billing"},
        }

        reminder = normalizer.normalize(raw)

        assert reminder.kind == ReminderKind.OVERDUE
        assert reminder.priority == Priority.HIGH
        assert reminder.title == "Pay invoice"
        assert reminder.agent_name == "Billing"
        assert reminder.scheduled_time == datetime(2026, 3, 15, 18, 0, tzinfo=timezone.utc)
        assert reminder.deadline == reminder.scheduled_time

    def test_daily_summary_forces_normal_priority(self, normalizer):
        """Daily summaries are always normal priority"""
        raw = v2_payload(title="Today", summary={"total": 4, "completed": 1, "pending": 3, "overdue": 2})
        raw["reminderType"] = "daily_summary"
        raw["priority"] = "high"

        reminder = normalizer.normalize(raw)

        assert reminder.priority == Priority.NORMAL
        assert reminder.summary.total == 4
        assert reminder.summary.overdue == 2

    @pytest.mark.parametrize("field", ["content", "description", "text"])
    def test_content_fallback_chain(self, normalizer, field):
        """The first non-empty body field becomes content"""
        reminder = normalizer.normalize(v2_payload(title="Title only", **{field: "Body text"}))

        assert reminder.content == "Body text"

    def test_content_falls_back_to_title(self, normalizer):
        """With no body fields the title is used as content"""
        reminder = normalizer.normalize(v2_payload(title="Title only", content="   "))

        assert reminder.content == "Title only"

    def test_empty_payload_gets_default_title(self, normalizer):
        """Nothing to show still produces a non-empty popup"""
        reminder = normalizer.normalize({"type": "TODO_REMINDER"})

        assert reminder.title == DEFAULT_TITLE
        assert reminder.content == DEFAULT_TITLE

    def test_v1_message_is_used_as_content(self, normalizer):
        """v1 payloads may carry the body in message"""
        reminder = normalizer.normalize({
            "type": "TODO_REMINDER",
            "todoId": "t-7",
            "title": "Stand-up",
            "message": "Join the call",
            "timestamp": 1773655200000,
        })

        assert reminder.id == "t-7"
        assert reminder.content == "Join the call"
        assert reminder.sent_at == datetime(2026, 3, 16, 10, 0, tzinfo=timezone.utc)
        assert reminder.scheduled_time is None
        assert reminder.deadline is None

    def test_related_todos_become_items(self, normalizer):
        """relatedTodos are parsed into TodoItem records"""
        raw = v2_payload(relatedTodos=[
            {"todoId": "a", "title": "First", "priority": "high", "deadline": T0},
            {"todoId": "b", "title": "Second", "status": "completed"},
            "not an item",
        ])
        raw["reminderType"] = "overdue"

        reminder = normalizer.normalize(raw)

        assert [item.todo_id for item in reminder.items] == ["a", "b"]
        assert reminder.items[0].priority == Priority.HIGH
        assert reminder.items[1].completed is True

    def test_tags_are_deduplicated(self, normalizer):
        """Tags behave as a set but keep their first-seen order"""
        reminder = normalizer.normalize(v2_payload(title="x", tags=["work", "work", " home "]))

        assert reminder.tags == ["work", "home"]

    def test_missing_id_is_generated(self, normalizer):
        """Reminders without a source id get a unique local id"""
        first = normalizer.normalize({"type": "TODO_REMINDER", "title": "a"})
        second = normalizer.normalize({"type": "TODO_REMINDER", "title": "a"})

        assert first.id.startswith("local-")
        assert first.id != second.id

    def test_free_text_is_wrapped(self, normalizer):
        """Unstructured input becomes a minimal normal reminder"""
        reminder = normalizer.normalize("Remember to water the plants")

        assert reminder.kind == ReminderKind.NORMAL
        assert reminder.priority == Priority.NORMAL
        assert reminder.content == "Remember to water the plants"

    def test_invalid_type_is_wrapped(self, normalizer):
        """InvalidType is recovered by the legacy wrapper"""
        reminder = normalizer.normalize({"type": "OTHER", "content": "still shown"})

        assert reminder.kind == ReminderKind.NORMAL
        assert reminder.content == "still shown"

    def test_unknown_kind_is_wrapped(self, normalizer):
        """UnknownReminderKind is recovered by the legacy wrapper"""
        reminder = normalizer.normalize({
            "type": "TODO_REMINDER",
            "reminderType": "mystery",
            "priority": "high",
            "todoId": "t-9",
            "title": "Odd one",
        })

        assert reminder.id == "t-9"
        assert reminder.kind == ReminderKind.NORMAL
        assert reminder.priority == Priority.NORMAL
        assert reminder.title == "Odd one"

    def test_unknown_kind_v2_keeps_envelope_fields(self, normalizer):
        """The legacy wrapper reads data and metadata of a v2 envelope"""
        raw = v2_payload(title="Odd one", description="Look into it")
        raw["reminderType"] = "mystery"

        reminder = normalizer.normalize(raw)

        assert reminder.id == "todo-42"
        assert reminder.kind == ReminderKind.NORMAL
        assert reminder.title == "Odd one"
        assert reminder.content == "Look into it"
        assert reminder.agent_name == "Planner"

    def test_source_status_is_kept(self, normalizer):
        reminder = normalizer.normalize(v2_payload(title="x", status=" Overdue ", overdueInfo={"days": 3}))

        assert reminder.source_status == "overdue"
        assert reminder.overdue_info == {"days": 3}
        assert reminder.deadline is None


class TestDebugCapture:
    """Tests for the raw input ring buffer"""

    def test_disabled_capture_records_nothing(self):
        capture = DebugCapture(size=3)

        assert capture.record({"a": 1}, datetime.now(timezone.utc)) is False
        assert capture.snapshot() == []

    def test_capture_keeps_only_latest(self):
        """Only the most recent inputs are kept"""
        capture = DebugCapture(size=3, enabled=True)
        now = datetime.now(timezone.utc)
        for i in range(5):
            capture.record({"n": i}, now)

        assert [item["raw"]["n"] for item in capture.snapshot()] == [2, 3, 4]
