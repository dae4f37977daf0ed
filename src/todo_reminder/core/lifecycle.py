"""活跃提醒存储

LifecycleStore 是提醒状态迁移的唯一入口。transition 在同一个同步步骤内完成合法性检查与状态写入
(事件循环中两步之间没有 await)，因此同一提醒上的两次快速操作只有先到者生效。

完成操作分两阶段:
1. transition(COMPLETE) 先在本地把状态置为 COMPLETED，并记入待确认集合;
2. 后端确认成功后 confirm() 移除提醒，失败则 rollback() 恢复为 PENDING。
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from todo_reminder.datamodel import Reminder, ReminderAction, ReminderStatus
from todo_reminder.errors import Conflict, InvalidTransition
from todo_reminder.logger import logger

__all__ = ["LifecycleStore", "TrackedReminder"]

_ACTION_TO_STATUS = {
    ReminderAction.COMPLETE: ReminderStatus.COMPLETED,
    ReminderAction.SNOOZE: ReminderStatus.SNOOZED,
    ReminderAction.DISMISS: ReminderStatus.DISMISSED,
}

# 记住最近结束的提醒 id，用于把对它们的重复操作判定为非法迁移
_TERMINAL_MEMORY = 500


@dataclass
class TrackedReminder:
    reminder: Reminder
    handle: Any = None  # 展示层返回的弹窗句柄


class LifecycleStore:
    def __init__(self) -> None:
        self._active: Dict[str, TrackedReminder] = {}
        self._provisional: Dict[str, int] = {}  # reminder_id -> 完成尝试序号
        self._terminal: "OrderedDict[str, ReminderStatus]" = OrderedDict()
        self._attempt_seq = 0

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, reminder_id: str) -> bool:
        return reminder_id in self._active

    def add(self, reminder: Reminder, handle: Any = None) -> Optional[TrackedReminder]:
        """加入一条 PENDING 提醒，返回被同 id 新提醒替换掉的旧记录(如有)

        Raises:
            Conflict: 同 id 提醒的完成确认仍在进行中
        """
        if reminder.id in self._provisional:
            raise Conflict(reminder.id, "add")
        reminder.status = ReminderStatus.PENDING
        previous = self._active.get(reminder.id)
        self._terminal.pop(reminder.id, None)
        self._active[reminder.id] = TrackedReminder(reminder=reminder, handle=handle)
        if previous is not None:
            logger.info(f"同 id 提醒已存在，使用新提醒替换: reminder_id={reminder.id}")
        logger.trace(f"加入活跃提醒: reminder_id={reminder.id}, kind={reminder.kind.value}, active={len(self._active)}")
        return previous

    def get(self, reminder_id: str) -> Optional[Reminder]:
        tracked = self._active.get(reminder_id)
        return tracked.reminder if tracked else None

    def get_handle(self, reminder_id: str) -> Any:
        tracked = self._active.get(reminder_id)
        return tracked.handle if tracked else None

    def active(self) -> List[Reminder]:
        return [t.reminder for t in self._active.values()]

    def pending(self) -> List[Reminder]:
        return [t.reminder for t in self._active.values() if t.reminder.status == ReminderStatus.PENDING]

    def is_provisional(self, reminder_id: str) -> bool:
        return reminder_id in self._provisional

    def attempt_of(self, reminder_id: str) -> Optional[int]:
        return self._provisional.get(reminder_id)

    def transition(self, reminder_id: str, action: ReminderAction) -> ReminderStatus:
        """比较并设置: 仅当前状态为 PENDING 时迁移

        Raises:
            Conflict: 该提醒的完成确认仍在进行中(并发的重复操作)
            InvalidTransition: 提醒不存在或已处于终态
        """
        action = ReminderAction(action)
        tracked = self._active.get(reminder_id)
        if tracked is None:
            raise InvalidTransition(reminder_id, self._terminal.get(reminder_id), action)

        reminder = tracked.reminder
        if reminder.status != ReminderStatus.PENDING:
            if reminder_id in self._provisional:
                raise Conflict(reminder_id, action)
            raise InvalidTransition(reminder_id, reminder.status, action)

        new_status = _ACTION_TO_STATUS[action]
        reminder.status = new_status

        if action == ReminderAction.COMPLETE:
            self._attempt_seq += 1
            self._provisional[reminder_id] = self._attempt_seq
            logger.trace(f"提醒进入待确认完成状态: reminder_id={reminder_id}, attempt={self._attempt_seq}")
        else:
            self._remove(reminder_id, new_status)
        logger.debug(f"提醒状态迁移: reminder_id={reminder_id}, pending -> {new_status.value}")
        return new_status

    def confirm(self, reminder_id: str, attempt: Optional[int] = None) -> Optional[TrackedReminder]:
        """后端确认完成，移除提醒；提醒已不再被跟踪或尝试序号不匹配时返回 None"""
        if not self._matches(reminder_id, attempt):
            return None
        del self._provisional[reminder_id]
        return self._remove(reminder_id, ReminderStatus.COMPLETED)

    def rollback(self, reminder_id: str, attempt: Optional[int] = None) -> Optional[Reminder]:
        """后端确认失败，恢复为 PENDING；提醒已不再被跟踪时返回 None"""
        if not self._matches(reminder_id, attempt):
            return None
        del self._provisional[reminder_id]
        reminder = self._active[reminder_id].reminder
        reminder.status = ReminderStatus.PENDING
        logger.debug(f"提醒完成状态已回滚: reminder_id={reminder_id}")
        return reminder

    def remove(self, reminder_id: str) -> Optional[TrackedReminder]:
        """不改变状态地移除(清空弹窗时使用)"""
        self._provisional.pop(reminder_id, None)
        return self._active.pop(reminder_id, None)

    def clear(self) -> List[TrackedReminder]:
        removed = list(self._active.values())
        self._active.clear()
        self._provisional.clear()
        logger.debug(f"已清空活跃提醒: count={len(removed)}")
        return removed

    def _matches(self, reminder_id: str, attempt: Optional[int]) -> bool:
        current = self._provisional.get(reminder_id)
        if current is None or reminder_id not in self._active:
            return False
        return attempt is None or attempt == current

    def _remove(self, reminder_id: str, status: ReminderStatus) -> Optional[TrackedReminder]:
        tracked = self._active.pop(reminder_id, None)
        self._terminal[reminder_id] = status
        self._terminal.move_to_end(reminder_id)
        while len(self._terminal) > _TERMINAL_MEMORY:
            self._terminal.popitem(last=False)
        return tracked
