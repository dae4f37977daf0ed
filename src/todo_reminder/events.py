"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

提醒引擎内部的生命周期变化（收到、派发、完成、稍后提醒、忽略、回滚、重新唤起）
以及对外的渲染/音效指令都通过总线广播，桌面外壳或管理 API 按需订阅。
"""

from __future__ import annotations

from pyee.asyncio import AsyncIOEventEmitter

from todo_reminder.logger import logger


# 事件名集中定义
class E:
    # 生命周期事件
    REMINDER_RECEIVED = "reminder.received"
    REMINDER_DISPATCHED = "reminder.dispatched"
    REMINDER_COMPLETED = "reminder.completed"
    REMINDER_SNOOZED = "reminder.snoozed"
    REMINDER_DISMISSED = "reminder.dismissed"
    REMINDER_ROLLED_BACK = "reminder.rolled_back"
    SNOOZE_PROMOTED = "snooze.promoted"

    # 展示层指令
    UI_RENDER = "ui.render"
    UI_REMOVE = "ui.remove"
    UI_TOAST = "ui.toast"
    UI_VIEW_TODO = "ui.view_todo"
    AUDIO_PLAY = "audio.play"


class Bus(AsyncIOEventEmitter):
    """订阅者抛出的异常只记录日志，不会传回 emit 的调用方"""

    def __init__(self) -> None:
        super().__init__()
        self.add_listener("error", self._on_handler_error)

    @staticmethod
    def _on_handler_error(error: BaseException) -> None:
        logger.opt(exception=error).error(f"事件处理器执行失败: {error!r}")


bus = Bus()

__all__ = ["Bus", "bus", "E"]
