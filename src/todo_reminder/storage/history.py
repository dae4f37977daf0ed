"""历史记录

记录用户对提醒执行的每一次终结操作(完成、稍后提醒、忽略)。
条目按时间戳升序保存，超过上限时淘汰最旧的条目；每次追加后立即持久化。
"""

from __future__ import annotations

import bisect
from dataclasses import replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ulid import ULID

from todo_reminder.datamodel import HistoryAction, HistoryEntry, Priority, Reminder
from todo_reminder.errors import PersistenceFailure
from todo_reminder.logger import logger
from todo_reminder.metrics import RuntimeMetrics, runtime_metrics
from todo_reminder.storage.kv import HISTORY_KEY, KVStore
from todo_reminder.utils import Clock, start_of_day, to_iso

__all__ = ["DateRange", "HistoryLedger", "EXPORT_FORMAT_VERSION", "date_range_bounds"]

EXPORT_FORMAT_VERSION = 1


class DateRange(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    WEEK = "week"
    MONTH = "month"


def date_range_bounds(date_range: DateRange, now: datetime) -> Tuple[datetime, datetime]:
    """返回 [start, end) 区间，周从周一开始，均按 now 所在时区计算"""
    today = start_of_day(now)
    if date_range == DateRange.TODAY:
        return today, today + timedelta(days=1)
    if date_range == DateRange.YESTERDAY:
        return today - timedelta(days=1), today
    if date_range == DateRange.WEEK:
        monday = today - timedelta(days=today.weekday())
        return monday, monday + timedelta(days=7)
    first = today.replace(day=1)
    if first.month == 12:
        next_first = first.replace(year=first.year + 1, month=1)
    else:
        next_first = first.replace(month=first.month + 1)
    return first, next_first


class HistoryLedger:
    def __init__(
        self,
        kv: Optional[KVStore],
        clock: Clock,
        max_entries: int = 1000,
        metrics: Optional[RuntimeMetrics] = None,
    ) -> None:
        self.kv = kv
        self.clock = clock
        self.max_entries = max_entries
        self.metrics = metrics or runtime_metrics
        self._entries: List[HistoryEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    async def load(self) -> int:
        """从持久化存储恢复历史记录，读取失败时以空记录继续运行"""
        if self.kv is None:
            return 0
        try:
            raw = await self.kv.get_json(HISTORY_KEY, [])
        except PersistenceFailure as e:
            self.metrics.record_persistence_error()
            logger.opt(exception=e).error("读取历史记录失败，使用空记录")
            return 0
        self._entries = self._sorted_capped(self._parse_entries(raw))
        logger.info(f"已加载历史记录: count={len(self._entries)}")
        return len(self._entries)

    async def append(
        self,
        action: HistoryAction,
        snapshot: Reminder,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        entry = HistoryEntry(
            id=str(ULID()),
            action=HistoryAction(action),
            reminder_id=snapshot.id,
            title_snapshot=snapshot.title,
            content_snapshot=snapshot.content,
            priority=snapshot.priority,
            kind=snapshot.kind,
            timestamp=self.clock.now(),
            agent_name=snapshot.agent_name,
            metadata=dict(metadata or {}),
        )
        keys = [e.timestamp for e in self._entries]
        self._entries.insert(bisect.bisect_right(keys, entry.timestamp), entry)
        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            del self._entries[:overflow]
            logger.trace(f"历史记录超出上限，淘汰最旧的 {overflow} 条")

        logger.debug(f"追加历史记录: id={entry.id}, action={entry.action.value}, reminder_id={entry.reminder_id}")
        await self._persist()
        return entry.id

    def snapshot(self) -> List[HistoryEntry]:
        return list(self._entries)

    def get(self, entry_id: str) -> Optional[HistoryEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def query(
        self,
        q: Optional[str] = None,
        action: Optional[HistoryAction] = None,
        priority: Optional[Priority] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[HistoryEntry]:
        """按标题关键字 / 操作 / 优先级 / 日期范围过滤，结果按时间倒序"""
        bounds = date_range_bounds(DateRange(date_range), self.clock.now()) if date_range else None
        needle = q.strip().lower() if q and q.strip() else None

        results = []
        for entry in reversed(self._entries):
            if action is not None and entry.action != HistoryAction(action):
                continue
            if priority is not None and entry.priority != Priority(priority):
                continue
            if needle is not None and needle not in entry.title_snapshot.lower():
                continue
            if bounds is not None:
                ts = self.clock.localize(entry.timestamp)
                if not bounds[0] <= ts < bounds[1]:
                    continue
            results.append(entry)
        return results

    def export(self, entries: Optional[Iterable[HistoryEntry]] = None) -> Dict[str, Any]:
        selected = sorted(entries, key=lambda e: e.timestamp) if entries is not None else self._entries
        return {
            "version": EXPORT_FORMAT_VERSION,
            "exportedAt": to_iso(self.clock.now()),
            "count": len(selected),
            "entries": [entry.to_dict() for entry in selected],
        }

    async def import_entries(self, data: Any, replace_existing: bool = True) -> int:
        """导入 export 产生的数据(也接受条目列表)，返回导入条数

        replace_existing=False 时与现有记录按 id 合并。
        """
        raw = data.get("entries", []) if isinstance(data, dict) else data
        imported = self._parse_entries(raw)
        if replace_existing:
            merged = imported
        else:
            known = {e.id for e in self._entries}
            merged = self._entries + [e for e in imported if e.id not in known]
        self._entries = self._sorted_capped(merged)
        logger.info(f"已导入历史记录: imported={len(imported)}, total={len(self._entries)}")
        await self._persist()
        return len(imported)

    async def clear(self) -> None:
        self._entries = []
        await self._persist()

    def _parse_entries(self, raw: Any) -> List[HistoryEntry]:
        if not isinstance(raw, list):
            logger.warning(f"历史记录格式不正确，已忽略: {type(raw).__name__}")
            return []
        entries = []
        for item in raw:
            try:
                entry = HistoryEntry.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"跳过无法解析的历史记录: {e}")
                continue
            if entry.timestamp is None:
                logger.warning(f"跳过缺少时间戳的历史记录: id={entry.id}")
                continue
            if entry.timestamp.tzinfo is None:
                entry = replace(entry, timestamp=self.clock.localize(entry.timestamp))
            entries.append(entry)
        return entries

    def _sorted_capped(self, entries: List[HistoryEntry]) -> List[HistoryEntry]:
        ordered = sorted(entries, key=lambda e: e.timestamp)
        if len(ordered) > self.max_entries:
            ordered = ordered[-self.max_entries:]
        return ordered

    async def _persist(self) -> None:
        if self.kv is None:
            return
        try:
            await self.kv.set_json(HISTORY_KEY, [entry.to_dict() for entry in self._entries])
        except PersistenceFailure as e:
            self.metrics.record_persistence_error()
            logger.opt(exception=e).error("历史记录持久化失败，本次变更仅保留在内存中")
