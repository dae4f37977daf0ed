from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from todo_reminder.utils import from_iso, to_iso

__all__ = [
    "ReminderKind", "Priority", "ReminderStatus", "ReminderAction", "UserAction", "HistoryAction",
    "ReminderSummary", "TodoItem", "Reminder",
    "SnoozeEntry", "HistoryEntry",
    "Tone", "ToneProfile", "RenderDirective",
]


# ----------------- 枚举 ----------------
class ReminderKind(str, Enum):
    NORMAL = "normal"
    OVERDUE = "overdue"
    DAILY_SUMMARY = "daily_summary"


class Priority(str, Enum):
    # 声明顺序即优先级顺序，报表中众数并列时按此顺序取第一个
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NORMAL = "normal"

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        """宽松解析，无法识别时回退为 NORMAL"""
        if isinstance(value, Priority):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NORMAL


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SNOOZED = "snoozed"
    COMPLETED = "completed"
    DISMISSED = "dismissed"


class ReminderAction(str, Enum):
    """LifecycleStore.transition 接受的状态迁移动作"""
    SNOOZE = "snooze"
    COMPLETE = "complete"
    DISMISS = "dismiss"


class UserAction(str, Enum):
    """展示层回调的用户意图，VIEW 只关闭弹窗不改变状态"""
    SNOOZE = "snooze"
    COMPLETE = "complete"
    DISMISS = "dismiss"
    VIEW = "view"


class HistoryAction(str, Enum):
    COMPLETED = "completed"
    SNOOZED = "snoozed"
    DISMISSED = "dismissed"


# ----------------- Reminder 数据模型 ----------------
@dataclass
class ReminderSummary:
    total: int = 0
    completed: int = 0
    pending: int = 0
    overdue: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "pending": self.pending,
            "overdue": self.overdue,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReminderSummary":
        return cls(
            total=int(data.get("total", 0)),
            completed=int(data.get("completed", 0)),
            pending=int(data.get("pending", 0)),
            overdue=int(data.get("overdue", 0)),
        )


@dataclass
class TodoItem:
    """逾期批量提醒与每日汇总中携带的单条待办"""
    todo_id: Optional[str] = None
    title: str = ""
    content: str = ""
    priority: Priority = Priority.NORMAL
    deadline: Optional[datetime] = None
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "todoId": self.todo_id,
            "title": self.title,
            "content": self.content,
            "priority": self.priority.value,
            "deadline": to_iso(self.deadline),
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TodoItem":
        return cls(
            todo_id=data.get("todoId"),
            title=data.get("title", ""),
            content=data.get("content", ""),
            priority=Priority.parse(data.get("priority")),
            deadline=from_iso(data.get("deadline")),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class Reminder:
    """标准化后的提醒

    created_at / updated_at 来自后端的待办记录; received_at 是本地派发时间，
    稍后提醒重新唤起时会被刷新。

    scheduled_time 是计划提醒时间，deadline 是待办截止时间，sent_at 是后端发送时间，
    三者互不替代。source_status 是后端记录的待办状态，与本地生命周期 status 无关。
    """
    id: str
    kind: ReminderKind
    priority: Priority
    title: str
    content: str
    scheduled_time: Optional[datetime] = None
    deadline: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)
    agent_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    status: ReminderStatus = ReminderStatus.PENDING
    summary: Optional[ReminderSummary] = None
    source_status: Optional[str] = None
    overdue_info: Optional[Dict[str, Any]] = None
    items: List[TodoItem] = field(default_factory=list)
    received_at: Optional[datetime] = None
    snooze_count: int = 0

    def copy(self, **changes: Any) -> "Reminder":
        changes.setdefault("tags", list(self.tags))
        changes.setdefault("items", list(self.items))
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "priority": self.priority.value,
            "title": self.title,
            "content": self.content,
            "scheduledTime": to_iso(self.scheduled_time),
            "deadline": to_iso(self.deadline),
            "sentAt": to_iso(self.sent_at),
            "tags": list(self.tags),
            "agentName": self.agent_name,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
            "status": self.status.value,
            "summary": self.summary.to_dict() if self.summary else None,
            "sourceStatus": self.source_status,
            "overdueInfo": self.overdue_info,
            "items": [item.to_dict() for item in self.items],
            "receivedAt": to_iso(self.received_at),
            "snoozeCount": self.snooze_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reminder":
        summary = data.get("summary")
        return cls(
            id=data["id"],
            kind=ReminderKind(data.get("kind", ReminderKind.NORMAL.value)),
            priority=Priority.parse(data.get("priority")),
            title=data.get("title", ""),
            content=data.get("content", ""),
            scheduled_time=from_iso(data.get("scheduledTime")),
            deadline=from_iso(data.get("deadline")),
            sent_at=from_iso(data.get("sentAt")),
            tags=list(data.get("tags") or []),
            agent_name=data.get("agentName"),
            created_at=from_iso(data.get("createdAt")),
            updated_at=from_iso(data.get("updatedAt")),
            status=ReminderStatus(data.get("status", ReminderStatus.PENDING.value)),
            summary=ReminderSummary.from_dict(summary) if summary else None,
            source_status=data.get("sourceStatus"),
            overdue_info=data.get("overdueInfo"),
            items=[TodoItem.from_dict(item) for item in data.get("items") or []],
            received_at=from_iso(data.get("receivedAt")),
            snooze_count=int(data.get("snoozeCount", 0)),
        )


@dataclass
class SnoozeEntry:
    reminder_id: str
    snapshot: Reminder
    due_at: datetime
    original_scheduled_at: Optional[datetime]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reminderId": self.reminder_id,
            "dueAt": to_iso(self.due_at),
            "originalScheduledAt": to_iso(self.original_scheduled_at),
            "createdAt": to_iso(self.created_at),
            "snapshot": self.snapshot.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnoozeEntry":
        return cls(
            reminder_id=data["reminderId"],
            snapshot=Reminder.from_dict(data["snapshot"]),
            due_at=from_iso(data["dueAt"]),
            original_scheduled_at=from_iso(data.get("originalScheduledAt")),
            created_at=from_iso(data.get("createdAt")) or from_iso(data["dueAt"]),
        )


# ----------------- History 数据模型 ----------------
@dataclass(frozen=True)
class HistoryEntry:
    id: str
    action: HistoryAction
    reminder_id: str
    title_snapshot: str
    content_snapshot: str
    priority: Priority
    kind: ReminderKind
    timestamp: datetime
    agent_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action.value,
            "reminderId": self.reminder_id,
            "title": self.title_snapshot,
            "content": self.content_snapshot,
            "priority": self.priority.value,
            "kind": self.kind.value,
            "timestamp": to_iso(self.timestamp),
            "agentName": self.agent_name,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            id=data["id"],
            action=HistoryAction(data["action"]),
            reminder_id=data["reminderId"],
            title_snapshot=data.get("title", ""),
            content_snapshot=data.get("content", ""),
            priority=Priority.parse(data.get("priority")),
            kind=ReminderKind(data.get("kind", ReminderKind.NORMAL.value)),
            timestamp=from_iso(data["timestamp"]),
            agent_name=data.get("agentName"),
            metadata=dict(data.get("metadata") or {}),
        )


# ----------------- 展示层指令 ----------------
@dataclass(frozen=True)
class Tone:
    frequency_hz: int
    gain: float
    duration_ms: int
    delay_ms: int = 0


@dataclass(frozen=True)
class ToneProfile:
    name: str
    tones: tuple[Tone, ...]


@dataclass
class RenderDirective:
    reminder_id: str
    kind: ReminderKind
    priority: Priority
    icon: str
    title: str
    content: str
    time_label: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    agent_name: Optional[str] = None
    summary: Optional[ReminderSummary] = None
    items: List[TodoItem] = field(default_factory=list)
    more_count: int = 0
    shake: bool = False
    show_help: bool = False
    actions: List[UserAction] = field(default_factory=lambda: list(UserAction))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reminderId": self.reminder_id,
            "kind": self.kind.value,
            "priority": self.priority.value,
            "icon": self.icon,
            "title": self.title,
            "content": self.content,
            "timeLabel": self.time_label,
            "tags": list(self.tags),
            "agentName": self.agent_name,
            "summary": self.summary.to_dict() if self.summary else None,
            "items": [item.to_dict() for item in self.items],
            "moreCount": self.more_count,
            "shake": self.shake,
            "showHelp": self.show_help,
            "actions": [a.value for a in self.actions],
        }
