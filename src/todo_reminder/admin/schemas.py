from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

from todo_reminder.core.manager import TodoReminderManager
from todo_reminder.datamodel import UserAction


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    started_at: float
    manager: TodoReminderManager


class ShutdownRequest(BaseModel):
    reason: str = Field(default="manual")


class ReminderActionRequest(BaseModel):
    action: UserAction
    minutes: int | None = Field(default=None, ge=1, le=7 * 24 * 60)
    due_at: datetime | None = None


class DebugCaptureRequest(BaseModel):
    enabled: bool
