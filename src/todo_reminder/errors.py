"""提醒引擎的错误分类

所有错误都在 TodoReminderManager 处就地恢复，不会中断宿主进程，也不会直接暴露给用户。
"""

from __future__ import annotations

__all__ = [
    "ReminderError",
    "NormalizationError", "InvalidType", "UnknownReminderKind",
    "InvalidTransition", "Conflict", "InvalidSnoozeTime",
    "BackendSyncFailure", "PersistenceFailure",
]


class ReminderError(Exception):
    """提醒引擎错误基类"""


class NormalizationError(ReminderError):
    """无法按任何已知格式解析的消息，回退为纯文本提醒"""


class InvalidType(NormalizationError):
    """消息的 type 字段不是 TODO_REMINDER"""

    def __init__(self, type_value: object) -> None:
        super().__init__(f"无法识别的消息类型: {type_value!r}")
        self.type_value = type_value


class UnknownReminderKind(NormalizationError):
    """reminderType 不在 normal / overdue / daily_summary 之内"""

    def __init__(self, kind_value: object) -> None:
        super().__init__(f"未知的提醒类型: {kind_value!r}")
        self.kind_value = kind_value


class InvalidTransition(ReminderError):
    """对非 Pending 状态(或不存在)的提醒执行操作"""

    def __init__(self, reminder_id: str, current: object, action: object) -> None:
        super().__init__(f"非法状态迁移: reminder_id={reminder_id}, current={current}, action={action}")
        self.reminder_id = reminder_id
        self.current = current
        self.action = action


class Conflict(ReminderError):
    """同一提醒上并发的重复操作，后到者被丢弃"""

    def __init__(self, reminder_id: str, action: object) -> None:
        super().__init__(f"提醒操作冲突: reminder_id={reminder_id}, action={action}")
        self.reminder_id = reminder_id
        self.action = action


class InvalidSnoozeTime(ReminderError):
    """稍后提醒的到期时间必须严格晚于当前时间"""


class BackendSyncFailure(ReminderError):
    """后端确认失败(请求无法发出、网络错误或非 2xx 响应)"""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceFailure(ReminderError):
    """持久化存储读写失败"""
