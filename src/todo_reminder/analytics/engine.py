"""历史统计分析

AnalyticsEngine 只读取历史记录快照，不修改任何状态。所有日期分桶都按注入时钟的时区计算。
比例统一以百分比表示并保留 1 位小数，总数为 0 时为 0.0。
"""

from __future__ import annotations

from collections import Counter
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from todo_reminder.datamodel import HistoryAction, HistoryEntry, Priority, ReminderKind
from todo_reminder.logger import logger
from todo_reminder.storage.history import HistoryLedger
from todo_reminder.utils import Clock, parse_timestamp, start_of_day, to_iso

__all__ = ["ReportPeriod", "AnalyticsEngine", "OVERDUE_REASONS", "WEEKDAY_NAMES", "is_overdue_entry"]

WEEKDAY_NAMES = ("周一", "周二", "周三", "周四", "周五", "周六", "周日")


class ReportPeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def days(self) -> int:
        return 7 if self == ReportPeriod.WEEKLY else 30


# 逾期原因关键字表: (类别, 名称, 关键字)
# 按字面子串匹配(不区分大小写)，每条记录在同一类别中至多计一次；并列时按声明顺序排序
OVERDUE_REASONS: Sequence[tuple[str, str, tuple[str, ...]]] = (
    ("time_insufficient", "时间不足", (
        "时间不够", "时间不足", "来不及", "太忙", "没空", "赶不上", "加班",
        "no time", "not enough time", "busy", "ran out of time",
    )),
    ("priority_conflict", "优先级冲突", (
        "冲突", "优先", "紧急任务", "插队", "临时任务", "其他任务",
        "conflict", "priority", "urgent", "interrupted",
    )),
    ("dependency_blocked", "依赖阻塞", (
        "等待", "依赖", "阻塞", "卡住", "审批", "等反馈",
        "blocked", "waiting", "depends on", "dependency",
    )),
    ("information_insufficient", "信息不足", (
        "不清楚", "不明确", "缺少信息", "信息不足", "资料", "需求不明",
        "unclear", "missing info", "need more information", "clarify",
    )),
)
_TOP_REASONS = 3


def _rate(part: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(part / total * 100, 1)


def _peak_index(histogram: List[int]) -> Optional[int]:
    """最大值所在下标，并列时取最小下标；全为 0 时返回 None"""
    if not any(histogram):
        return None
    return histogram.index(max(histogram))


def is_overdue_entry(entry: HistoryEntry) -> bool:
    if entry.kind == ReminderKind.OVERDUE:
        return True
    metadata = entry.metadata or {}
    if metadata.get("overdue"):
        return True
    return str(metadata.get("status") or "").lower() == "overdue"


def _dominant_priority(entries: Iterable[HistoryEntry]) -> Optional[Priority]:
    counts = Counter(entry.priority for entry in entries)
    if not counts:
        return None
    best = max(counts.values())
    for priority in Priority:
        if counts.get(priority) == best:
            return priority
    return None


class AnalyticsEngine:
    def __init__(self, source: HistoryLedger | Iterable[HistoryEntry], clock: Clock) -> None:
        self.source = source
        self.clock = clock

    def _entries(self) -> List[HistoryEntry]:
        if isinstance(self.source, HistoryLedger):
            return self.source.snapshot()
        return list(self.source)

    def calculate_statistics(self, entries: Optional[List[HistoryEntry]] = None) -> Dict[str, Any]:
        entries = self._entries() if entries is None else entries
        total = len(entries)
        by_action = Counter(entry.action for entry in entries)
        by_priority = Counter(entry.priority for entry in entries)
        by_kind = Counter(entry.kind for entry in entries)
        overdue = sum(1 for entry in entries if is_overdue_entry(entry))
        completed = by_action.get(HistoryAction.COMPLETED, 0)

        return {
            "total": total,
            "completed": completed,
            "snoozed": by_action.get(HistoryAction.SNOOZED, 0),
            "dismissed": by_action.get(HistoryAction.DISMISSED, 0),
            "overdue": overdue,
            "completion_rate": _rate(completed, total),
            "overdue_rate": _rate(overdue, total),
            "by_priority": {p.value: by_priority.get(p, 0) for p in Priority},
            "by_kind": {k.value: by_kind.get(k, 0) for k in ReminderKind},
        }

    def calculate_trends(self, window_days: int = 30) -> Dict[str, Any]:
        if window_days < 1:
            raise ValueError("window_days 必须大于 0")
        now = self.clock.now()
        today = start_of_day(now)
        start = today - timedelta(days=window_days - 1)
        end = today + timedelta(days=1)

        daily: Dict[str, Dict[str, Any]] = {}
        for offset in range(window_days):
            day = (start + timedelta(days=offset)).date().isoformat()
            daily[day] = {"date": day, "completed": 0, "pending": 0}
        hourly = [0] * 24
        weekday = [0] * 7

        for entry in self._entries():
            local = self.clock.localize(entry.timestamp)
            if not start <= local < end:
                continue
            bucket = daily[local.date().isoformat()]
            if entry.action == HistoryAction.COMPLETED:
                bucket["completed"] += 1
                hourly[local.hour] += 1
                weekday[local.weekday()] += 1
            else:
                bucket["pending"] += 1

        peak_hour = _peak_index(hourly)
        busiest = _peak_index(weekday)
        return {
            "window_days": window_days,
            "start": start.date().isoformat(),
            "end": today.date().isoformat(),
            "daily": list(daily.values()),
            "hourly": hourly,
            "weekday": weekday,
            "peak_hour": peak_hour,
            "busiest_weekday": busiest,
            "busiest_weekday_name": WEEKDAY_NAMES[busiest] if busiest is not None else None,
        }

    def analyze_overdue(self) -> Dict[str, Any]:
        entries = self._entries()
        overdue = [entry for entry in entries if is_overdue_entry(entry)]

        ages = []
        for entry in overdue:
            due = entry.metadata.get("deadline") or entry.metadata.get("scheduledTime")
            deadline = parse_timestamp(due, self.clock.tz)
            if deadline is not None and deadline < entry.timestamp:
                ages.append((entry.timestamp - deadline).total_seconds() / 86400)
        average_days = round(sum(ages) / len(ages), 1) if ages else 0.0

        counts = [0] * len(OVERDUE_REASONS)
        for entry in overdue:
            text = " ".join(
                str(part) for part in (
                    entry.title_snapshot,
                    entry.content_snapshot,
                    entry.metadata.get("reason"),
                    entry.metadata.get("note"),
                ) if part
            ).lower()
            for index, (_, _, keywords) in enumerate(OVERDUE_REASONS):
                if any(keyword.lower() in text for keyword in keywords):
                    counts[index] += 1

        ranked = sorted(
            (index for index, count in enumerate(counts) if count > 0),
            key=lambda index: (-counts[index], index),
        )[:_TOP_REASONS]
        top_reasons = [
            {
                "category": OVERDUE_REASONS[index][0],
                "label": OVERDUE_REASONS[index][1],
                "count": counts[index],
                "percentage": _rate(counts[index], len(overdue)),
            }
            for index in ranked
        ]
        logger.debug(f"逾期分析: overdue={len(overdue)}, reasons={[r['category'] for r in top_reasons]}")

        return {
            "total_overdue": len(overdue),
            "overdue_rate": _rate(len(overdue), len(entries)),
            "average_overdue_days": average_days,
            "by_priority": {p.value: sum(1 for e in overdue if e.priority == p) for p in Priority},
            "top_reasons": top_reasons,
        }

    def generate_report(self, period: ReportPeriod | str = ReportPeriod.WEEKLY) -> Dict[str, Any]:
        period = ReportPeriod(period)
        now = self.clock.now()
        start = now - timedelta(days=period.days)
        all_entries = self._entries()
        window = [entry for entry in all_entries if start < entry.timestamp <= now]

        stats = self.calculate_statistics(window)
        dominant = _dominant_priority(window)
        report: Dict[str, Any] = {
            "period": period.value,
            "start": to_iso(start),
            "end": to_iso(now),
            "days": period.days,
            "total": stats["total"],
            "completed": stats["completed"],
            "snoozed": stats["snoozed"],
            "dismissed": stats["dismissed"],
            "completion_rate": stats["completion_rate"],
            "average_per_day": round(stats["total"] / period.days, 1),
            "dominant_priority": dominant.value if dominant else None,
        }
        if period == ReportPeriod.MONTHLY:
            all_time_rate = self.calculate_statistics(all_entries)["completion_rate"]
            report["improvement_rate"] = round(stats["completion_rate"] - all_time_rate, 1)
        return report
