"""消息标准化

后端推送的待办提醒有三种形态：
1. v2 格式: 带 version 标记，字段嵌套在 data / metadata 中，按 _V2_FIELD_MAP 映射为标准字段;
2. v1 格式: 标准字段直接位于顶层;
3. 其他任何内容: 按纯文本兜底包装成普通提醒，不直接丢弃。

decode 依次尝试 v2、v1 两种模式并返回其中之一，失败时抛出 NormalizationError;
MessageNormalizer.normalize 总是返回 Reminder，解析失败时走纯文本兜底。
"""

from __future__ import annotations

import json
from collections import deque
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Deque, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from ulid import ULID

from todo_reminder.core.classify import apply_routing_overrides
from todo_reminder.datamodel import Priority, Reminder, ReminderKind, ReminderSummary, TodoItem
from todo_reminder.errors import InvalidType, NormalizationError, UnknownReminderKind
from todo_reminder.logger import logger
from todo_reminder.utils import parse_timestamp, to_iso

__all__ = [
    "REMINDER_MESSAGE_TYPE", "DEFAULT_TITLE",
    "V1Payload", "V2Payload",
    "MessageNormalizer", "DebugCapture", "decode",
]

REMINDER_MESSAGE_TYPE = "TODO_REMINDER"
DEFAULT_TITLE = "待办提醒"

# 正文兜底顺序: 第一个非空值作为 content
_CONTENT_FALLBACK = ("content", "description", "text", "message", "title")

# v2 嵌套字段 -> 标准字段，同一目标字段以先出现的非空值为准
_V2_FIELD_MAP = (
    ("type", "type"),
    ("reminderType", "reminderType"),
    ("priority", "priority"),
    ("data.todoId", "todoId"),
    ("data.id", "id"),
    ("data.title", "title"),
    ("data.content", "content"),
    ("data.description", "description"),
    ("data.text", "text"),
    ("data.deadline", "scheduledTime"),
    ("data.deadline", "deadline"),
    ("data.tags", "tags"),
    ("data.status", "status"),
    ("data.createdAt", "createdAt"),
    ("data.updatedAt", "updatedAt"),
    ("data.assignee", "assignee"),
    ("data.progress", "progress"),
    ("data.summary", "summary"),
    ("data.relatedTodos", "items"),
    ("data.items", "items"),
    ("data.overdueInfo", "overdueInfo"),
    ("metadata.agentName", "agentName"),
)


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)


class V2Payload(_WireModel):
    """v2 外层结构，只校验版本标记与 data / metadata 两个分节"""
    version: str
    type: str = REMINDER_MESSAGE_TYPE
    reminder_type: Optional[str] = Field(default=None, alias="reminderType")
    priority: Optional[str] = None
    data: Dict[str, Any]
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not value.strip().startswith("2"):
            raise ValueError(f"不支持的版本: {value}")
        return value

    def to_canonical(self) -> Dict[str, Any]:
        """按映射表把嵌套字段展开为 v1 标准字段"""
        source = self.model_dump(by_alias=True)
        canonical: Dict[str, Any] = {}
        for path, target in _V2_FIELD_MAP:
            value: Any = source
            for part in path.split("."):
                value = value.get(part) if isinstance(value, dict) else None
            if value is not None and canonical.get(target) is None:
                canonical[target] = value
        return canonical


class V1Payload(_WireModel):
    wire: Literal["v1", "v2"] = "v1"
    type: str
    reminder_type: Optional[str] = Field(default=None, alias="reminderType")
    priority: Optional[str] = None
    todo_id: Optional[str] = Field(default=None, alias="todoId")
    id: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    description: Optional[str] = None
    text: Optional[str] = None
    message: Optional[str] = None
    scheduled_time: Any = Field(default=None, alias="scheduledTime")
    deadline: Any = None
    timestamp: Any = None
    tags: List[Any] = Field(default_factory=list)
    agent_name: Optional[str] = Field(default=None, alias="agentName")
    created_at: Any = Field(default=None, alias="createdAt")
    updated_at: Any = Field(default=None, alias="updatedAt")
    status: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None
    items: Optional[List[Any]] = None
    overdue_info: Optional[Dict[str, Any]] = Field(default=None, alias="overdueInfo")

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, bytes)):
            return [value]
        return value

    @property
    def kind(self) -> ReminderKind:
        raw_kind = (self.reminder_type or ReminderKind.NORMAL.value).strip().lower()
        try:
            return ReminderKind(raw_kind)
        except ValueError:
            raise UnknownReminderKind(self.reminder_type) from None


def _first_text(source: Dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = source.get(key)
        if value is None:
            continue
        text = value if isinstance(value, str) else str(value)
        if text.strip():
            return text.strip()
    return ""


def _load_json_text(raw: Union[str, bytes]) -> Any:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text


def decode(raw: Any) -> V1Payload:
    """依次尝试 v2 / v1 模式，返回标准字段形态的 V1Payload

    v2 消息会先经过字段映射再按 v1 校验，调用方只需处理一种结构。
    """
    if isinstance(raw, (str, bytes)):
        raw = _load_json_text(raw)
    if not isinstance(raw, dict):
        raise NormalizationError(f"不是结构化消息: {type(raw).__name__}")

    candidate: Dict[str, Any] = raw
    try:
        envelope = V2Payload.model_validate(raw)
    except ValidationError:
        logger.trace("消息不符合 v2 格式，尝试 v1")
    else:
        candidate = {**envelope.to_canonical(), "wire": "v2"}
        logger.trace(f"识别为 v2 消息: version={envelope.version}")

    try:
        payload = V1Payload.model_validate(candidate)
    except ValidationError as e:
        raise NormalizationError(f"消息不符合任何已知格式: {e.error_count()} 处错误") from e

    if payload.type != REMINDER_MESSAGE_TYPE:
        raise InvalidType(payload.type)
    kind = payload.kind
    logger.debug(f"待办提醒消息解析成功: wire={payload.wire}, kind={kind.value}")
    return payload


def _parse_item(raw: Any, tz: tzinfo) -> Optional[TodoItem]:
    if not isinstance(raw, dict):
        return None
    status = str(raw.get("status") or "").lower()
    todo_id = raw.get("todoId") or raw.get("id")
    return TodoItem(
        todo_id=str(todo_id) if todo_id is not None else None,
        title=_first_text(raw, ("title",)),
        content=_first_text(raw, _CONTENT_FALLBACK),
        priority=Priority.parse(raw.get("priority")),
        deadline=parse_timestamp(raw.get("deadline") or raw.get("scheduledTime"), tz),
        completed=bool(raw.get("completed")) or status in ("completed", "done"),
    )


def _parse_summary(raw: Optional[Dict[str, Any]]) -> Optional[ReminderSummary]:
    if not raw:
        return None
    try:
        return ReminderSummary.from_dict(raw)
    except (TypeError, ValueError):
        logger.warning(f"汇总统计字段无法解析，已忽略: {raw}")
        return None


class DebugCapture:
    """最近若干条原始消息的环形缓冲，仅在显式开启时记录"""

    def __init__(self, size: int = 50, enabled: bool = False) -> None:
        self.enabled = enabled
        self._buffer: Deque[Dict[str, Any]] = deque(maxlen=size)

    def record(self, raw: Any, received_at: datetime) -> bool:
        if not self.enabled:
            return False
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            json.dumps(raw)
        except (TypeError, ValueError):
            raw = repr(raw)
        self._buffer.append({"receivedAt": to_iso(received_at), "raw": raw})
        return True

    def load(self, records: List[Dict[str, Any]]) -> None:
        self._buffer.clear()
        self._buffer.extend(records)

    def snapshot(self) -> List[Dict[str, Any]]:
        return list(self._buffer)

    def clear(self) -> None:
        self._buffer.clear()


class MessageNormalizer:
    def __init__(
        self,
        tz: tzinfo = timezone.utc,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.tz = tz
        self._id_factory = id_factory or (lambda: f"local-{ULID()}")

    def normalize(self, raw: Any) -> Reminder:
        try:
            payload = decode(raw)
        except NormalizationError as e:
            logger.warning(f"待办提醒消息解析失败，按纯文本兜底: {e}")
            return self.wrap_legacy(raw)
        return self.from_payload(payload)

    def from_payload(self, payload: V1Payload) -> Reminder:
        """把已解码的标准字段转换为 Reminder，并应用按类型的优先级规则"""
        source = payload.model_dump(by_alias=True)
        items = [item for item in (_parse_item(raw, self.tz) for raw in payload.items or []) if item]

        todo_id = payload.todo_id or payload.id
        tags: List[str] = []
        for tag in payload.tags:
            tag_text = str(tag).strip()
            if tag_text and tag_text not in tags:
                tags.append(tag_text)

        title = _first_text(source, ("title",))
        content = _first_text(source, _CONTENT_FALLBACK) or title or DEFAULT_TITLE

        reminder = Reminder(
            id=str(todo_id) if todo_id else self._id_factory(),
            kind=payload.kind,
            priority=Priority.parse(payload.priority),
            title=title or DEFAULT_TITLE,
            content=content,
            scheduled_time=parse_timestamp(payload.scheduled_time, self.tz),
            deadline=parse_timestamp(payload.deadline, self.tz),
            sent_at=parse_timestamp(payload.timestamp, self.tz),
            tags=tags,
            agent_name=payload.agent_name,
            created_at=parse_timestamp(payload.created_at, self.tz),
            updated_at=parse_timestamp(payload.updated_at, self.tz),
            summary=_parse_summary(payload.summary),
            source_status=payload.status.strip().lower() if payload.status else None,
            overdue_info=payload.overdue_info,
            items=items,
        )
        return apply_routing_overrides(reminder)

    def wrap_legacy(self, raw: Any) -> Reminder:
        """纯文本兜底: 尽力提取文字，包装为普通优先级的普通提醒"""
        if isinstance(raw, (str, bytes)):
            raw = _load_json_text(raw)

        title = DEFAULT_TITLE
        todo_id = None
        agent_name = None
        if isinstance(raw, dict):
            # v2 外层结构校验失败时仍优先取 data / metadata 中的字段
            data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
            metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
            source = {**raw, **{k: v for k, v in data.items() if v is not None}}
            text = _first_text(source, _CONTENT_FALLBACK + ("body",))
            title = _first_text(source, ("title",)) or DEFAULT_TITLE
            todo_id = source.get("todoId") or source.get("id")
            agent_name = metadata.get("agentName") or raw.get("agentName")
            if not text:
                text = json.dumps(raw, ensure_ascii=False, default=str)
        elif raw is None:
            text = ""
        else:
            text = raw.strip() if isinstance(raw, str) else str(raw)

        return Reminder(
            id=str(todo_id) if todo_id else self._id_factory(),
            kind=ReminderKind.NORMAL,
            priority=Priority.NORMAL,
            title=title,
            content=text or title,
            agent_name=str(agent_name) if agent_name else None,
        )
