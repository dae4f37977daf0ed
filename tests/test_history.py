"""
Unit tests for HistoryLedger.

Tests focus on:
- cap enforcement and eviction order
- export / import round trip
- query filters and date buckets
- persistence and failure recovery
"""
import json
from datetime import datetime

import pytest
import pytest_asyncio

from conftest import TZ, make_reminder
from todo_reminder.datamodel import HistoryAction, Priority
from todo_reminder.errors import PersistenceFailure
from todo_reminder.storage.history import DateRange, HistoryLedger
from todo_reminder.storage.kv import HISTORY_KEY, KVStore


class FailingKV(KVStore):
    def __init__(self):
        super().__init__(conn=None)

    async def get_json(self, key, default=None):
        raise PersistenceFailure("read failed")

    async def set_json(self, key, value):
        raise PersistenceFailure("write failed")


class TestAppend:
    """Tests for HistoryLedger.append"""

    @pytest.mark.asyncio
    async def test_cap_evicts_oldest(self, clock):
        """After 1200 appends only the 1000 most recent remain"""
        ledger = HistoryLedger(None, clock, max_entries=1000)
        start = clock.now()
        first_id = None
        for i in range(1200):
            entry_id = await ledger.append(HistoryAction.COMPLETED, make_reminder(f"todo-{i}"))
            first_id = first_id or entry_id
            clock.advance(seconds=1)

        entries = ledger.snapshot()
        assert len(entries) == 1000
        assert ledger.get(first_id) is None
        assert entries[0].reminder_id == "todo-200"
        assert entries[-1].reminder_id == "todo-1199"
        assert (entries[0].timestamp - start).total_seconds() == 200

    @pytest.mark.asyncio
    async def test_entry_snapshots_reminder(self, clock):
        ledger = HistoryLedger(None, clock)
        reminder = make_reminder(priority=Priority.HIGH, agent_name="Planner")

        entry_id = await ledger.append(HistoryAction.DISMISSED, reminder, {"note": "later"})
        reminder.title = "changed afterwards"

        entry = ledger.get(entry_id)
        assert entry.title_snapshot == "Write weekly report"
        assert entry.priority == Priority.HIGH
        assert entry.agent_name == "Planner"
        assert entry.metadata == {"note": "later"}
        assert entry.timestamp == clock.now()

    @pytest.mark.asyncio
    async def test_append_persists(self, clock, kv):
        ledger = HistoryLedger(kv, clock)

        await ledger.append(HistoryAction.SNOOZED, make_reminder())

        stored = await kv.get_json(HISTORY_KEY)
        assert len(stored) == 1
        assert stored[0]["action"] == "snoozed"

    @pytest.mark.asyncio
    async def test_load_restores_entries(self, clock, kv):
        ledger = HistoryLedger(kv, clock)
        await ledger.append(HistoryAction.COMPLETED, make_reminder("a"))
        clock.advance(minutes=1)
        await ledger.append(HistoryAction.DISMISSED, make_reminder("b"))

        reloaded = HistoryLedger(kv, clock)
        assert await reloaded.load() == 2
        assert reloaded.snapshot() == ledger.snapshot()

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_memory(self, clock, metrics):
        """A failed write is logged and the entry stays in memory"""
        ledger = HistoryLedger(FailingKV(), clock, metrics=metrics)

        entry_id = await ledger.append(HistoryAction.COMPLETED, make_reminder())

        assert ledger.get(entry_id) is not None
        assert metrics.persistence_error_count == 1
        assert await ledger.load() == 0
        assert metrics.persistence_error_count == 2


class TestExportImport:
    """Tests for the export format"""

    @pytest.mark.asyncio
    async def test_round_trip_is_lossless(self, clock):
        ledger = HistoryLedger(None, clock)
        for i, action in enumerate([HistoryAction.COMPLETED, HistoryAction.SNOOZED, HistoryAction.DISMISSED]):
            await ledger.append(action, make_reminder(f"todo-{i}"), {"scheduledTime": None, "overdue": i == 2})
            clock.advance(minutes=7)

        exported = json.loads(json.dumps(ledger.export()))
        restored = HistoryLedger(None, clock)
        imported = await restored.import_entries(exported)

        assert imported == 3
        assert exported["count"] == 3
        assert restored.snapshot() == ledger.snapshot()

    @pytest.mark.asyncio
    async def test_merge_import_skips_known_ids(self, clock):
        ledger = HistoryLedger(None, clock)
        await ledger.append(HistoryAction.COMPLETED, make_reminder("a"))
        exported = ledger.export()
        clock.advance(minutes=1)
        await ledger.append(HistoryAction.DISMISSED, make_reminder("b"))

        await ledger.import_entries(exported, replace_existing=False)

        assert len(ledger) == 2

    @pytest.mark.asyncio
    async def test_import_skips_malformed_entries(self, clock):
        ledger = HistoryLedger(None, clock)

        imported = await ledger.import_entries([
            {"id": "1", "action": "completed", "reminderId": "a", "timestamp": "2026-03-16T08:00:00+08:00"},
            {"id": "2", "action": "exploded", "reminderId": "b", "timestamp": "2026-03-16T08:00:00+08:00"},
            {"id": "3"},
        ])

        assert imported == 1
        assert ledger.snapshot()[0].reminder_id == "a"

    @pytest.mark.asyncio
    async def test_export_of_query_result(self, clock):
        ledger = HistoryLedger(None, clock)
        await ledger.append(HistoryAction.COMPLETED, make_reminder("a"))
        await ledger.append(HistoryAction.DISMISSED, make_reminder("b"))

        exported = ledger.export(ledger.query(action=HistoryAction.DISMISSED))

        assert [e["reminderId"] for e in exported["entries"]] == ["b"]


class TestQuery:
    """Tests for HistoryLedger.query"""

    @pytest_asyncio.fixture
    async def ledger(self, clock):
        ledger = HistoryLedger(None, clock)
        now = clock.now()
        samples = [
            (datetime(2026, 3, 1, 10, 0, tzinfo=TZ), HistoryAction.COMPLETED, Priority.HIGH, "Quarterly Budget"),
            (datetime(2026, 3, 15, 10, 0, tzinfo=TZ), HistoryAction.DISMISSED, Priority.LOW, "Water plants"),
            (datetime(2026, 3, 16, 8, 0, tzinfo=TZ), HistoryAction.COMPLETED, Priority.LOW, "Budget review"),
        ]
        for when, action, priority, title in samples:
            clock.set(when)
            await ledger.append(action, make_reminder(title=title, priority=priority))
        clock.set(now)
        return ledger

    @pytest.mark.asyncio
    async def test_results_are_newest_first(self, ledger):
        titles = [e.title_snapshot for e in ledger.query()]

        assert titles == ["Budget review", "Water plants", "Quarterly Budget"]

    @pytest.mark.asyncio
    async def test_text_filter_is_case_insensitive(self, ledger):
        assert len(ledger.query(q="budget")) == 2

    @pytest.mark.asyncio
    async def test_action_and_priority_filters(self, ledger):
        assert len(ledger.query(action=HistoryAction.COMPLETED)) == 2
        assert len(ledger.query(priority=Priority.LOW)) == 2
        assert len(ledger.query(action="completed", priority="low")) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "date_range, expected",
        [
            (DateRange.TODAY, ["Budget review"]),
            (DateRange.YESTERDAY, ["Water plants"]),
            (DateRange.WEEK, ["Budget review"]),
            (DateRange.MONTH, ["Budget review", "Water plants", "Quarterly Budget"]),
        ],
    )
    async def test_date_buckets(self, ledger, date_range, expected):
        """Week starts on Monday, month on the first"""
        assert [e.title_snapshot for e in ledger.query(date_range=date_range)] == expected
