"""按提醒类型的路由规则

逾期提醒一律提升为高优先级；每日汇总一律按普通优先级展示，与其中的逾期数量无关。
规则在标准化与派发两处都会应用，重新唤起的稍后提醒绕过标准化，仍然能得到一致的结果。
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from todo_reminder.datamodel import Priority, Reminder, ReminderKind, ReminderSummary, TodoItem

__all__ = ["apply_routing_overrides", "count_overdue_items", "derive_summary"]


def apply_routing_overrides(reminder: Reminder) -> Reminder:
    if reminder.kind == ReminderKind.OVERDUE:
        reminder.priority = Priority.HIGH
    elif reminder.kind == ReminderKind.DAILY_SUMMARY:
        reminder.priority = Priority.NORMAL
    return reminder


def count_overdue_items(items: Iterable[TodoItem], now: datetime) -> int:
    """统计未完成待办中的逾期数量，没有截止时间的待办同样计为逾期"""
    overdue = 0
    for item in items:
        if item.completed:
            continue
        if item.deadline is None or item.deadline < now:
            overdue += 1
    return overdue


def derive_summary(reminder: Reminder, now: datetime) -> ReminderSummary:
    """计算每日汇总的统计数字

    后端给出的数字优先；带有待办列表时逾期数总是按列表重新计算。
    """
    base = reminder.summary or ReminderSummary()
    items = reminder.items
    if not items:
        return ReminderSummary(
            total=base.total,
            completed=base.completed,
            pending=base.pending,
            overdue=base.overdue,
        )

    completed_items = sum(1 for item in items if item.completed)
    return ReminderSummary(
        total=base.total or len(items),
        completed=base.completed or completed_items,
        pending=base.pending or (len(items) - completed_items),
        overdue=count_overdue_items(items, now),
    )
