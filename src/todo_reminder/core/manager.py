"""待办提醒管理器

TodoReminderManager 把各组件组装成一个服务，并作为错误恢复的边界:
标准化失败、非法迁移、并发冲突、后端同步失败、持久化失败都在这里就地处理，
不会传播到展示层，也不会中断宿主进程。

用户操作流程:
- complete: 先在本地置为 COMPLETED(待确认)，后端确认后移除提醒并写入历史；失败则回滚为 PENDING 并提示;
- snooze:   移出活跃集合并加入稍后提醒队列，写入历史;
- dismiss:  移出活跃集合，写入历史;
- view:     关闭弹窗并停止跟踪，不写历史，由外壳打开待办详情。
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from todo_reminder.analytics.engine import AnalyticsEngine
from todo_reminder.config.settings import (
    DEBUG_CAPTURE_ENABLED,
    DEBUG_CAPTURE_SIZE,
    HISTORY_MAX_ENTRIES,
    SNOOZE_DEFAULT_MINUTES,
    SNOOZE_FIRE_MISSED_ON_STARTUP,
    SNOOZE_SCAN_INTERVAL_SECONDS,
)
from todo_reminder.core.dispatcher import Dispatcher
from todo_reminder.core.lifecycle import LifecycleStore
from todo_reminder.core.normalizer import DebugCapture, MessageNormalizer, decode
from todo_reminder.datamodel import HistoryAction, Reminder, ReminderAction, ReminderKind, SnoozeEntry, UserAction
from todo_reminder.errors import (
    BackendSyncFailure,
    Conflict,
    InvalidSnoozeTime,
    InvalidTransition,
    NormalizationError,
    PersistenceFailure,
)
from todo_reminder.events import Bus, E, bus as default_bus
from todo_reminder.logger import logger
from todo_reminder.metrics import RuntimeMetrics, runtime_metrics
from todo_reminder.presentation.base import AudioPlayer, Presenter
from todo_reminder.storage.history import HistoryLedger
from todo_reminder.storage.kv import DEBUG_CAPTURE_KEY, FIRST_RUN_KEY, KVStore
from todo_reminder.sync.backend import BackendSync
from todo_reminder.utils import Clock, to_iso
from todo_reminder.world.snooze import SnoozeScheduler

__all__ = ["TodoReminderManager", "configure_manager", "require_manager"]

COMPLETE_SUCCESS_NOTICE = "待办已标记为完成"
COMPLETE_FAILURE_NOTICE = "标记完成失败，请稍后重试"


class TodoReminderManager:
    def __init__(
        self,
        presenter: Presenter,
        audio: AudioPlayer,
        clock: Clock,
        kv: Optional[KVStore] = None,
        backend: Optional[BackendSync] = None,
        bus: Optional[Bus] = None,
        metrics: Optional[RuntimeMetrics] = None,
        normalizer: Optional[MessageNormalizer] = None,
        history_max_entries: int = HISTORY_MAX_ENTRIES,
        snooze_interval: float = SNOOZE_SCAN_INTERVAL_SECONDS,
        snooze_default_minutes: int = SNOOZE_DEFAULT_MINUTES,
        fire_missed_on_startup: bool = SNOOZE_FIRE_MISSED_ON_STARTUP,
        debug_capture_enabled: bool = DEBUG_CAPTURE_ENABLED,
        debug_capture_size: int = DEBUG_CAPTURE_SIZE,
    ) -> None:
        self.presenter = presenter
        self.clock = clock
        self.kv = kv
        self.backend = backend
        self.bus = bus or default_bus
        self.metrics = metrics or runtime_metrics
        self.normalizer = normalizer or MessageNormalizer(tz=clock.tz)
        self.snooze_default_minutes = snooze_default_minutes
        self.debug_capture = DebugCapture(size=debug_capture_size, enabled=debug_capture_enabled)

        self.lifecycle = LifecycleStore()
        self.dispatcher = Dispatcher(
            self.lifecycle, presenter, audio, clock,
            bus=self.bus, metrics=self.metrics, on_user_action=self.on_user_action,
        )
        self.history = HistoryLedger(kv, clock, max_entries=history_max_entries, metrics=self.metrics)
        self.snoozes = SnoozeScheduler(
            self.lifecycle, self.dispatcher, clock,
            kv=kv, backend=backend, interval=snooze_interval,
            fire_missed_on_startup=fire_missed_on_startup, bus=self.bus, metrics=self.metrics,
        )
        self.analytics = AnalyticsEngine(self.history, clock)

        self._first_run_done = False
        self._tasks: Set[asyncio.Task] = set()

    # ----------------- 生命周期 ----------------
    async def start(self) -> None:
        await self.history.load()
        if self.kv is not None:
            try:
                self._first_run_done = bool(await self.kv.get_json(FIRST_RUN_KEY, False))
                if self.debug_capture.enabled:
                    self.debug_capture.load(await self.kv.get_json(DEBUG_CAPTURE_KEY, []) or [])
            except PersistenceFailure as e:
                self.metrics.record_persistence_error()
                logger.opt(exception=e).error("读取首次运行标记失败")
        await self.snoozes.load()
        logger.info(
            f"待办提醒管理器已启动: history={len(self.history)}, snoozes={len(self.snoozes)}, "
            f"first_run_done={self._first_run_done}"
        )

    async def stop(self) -> None:
        await self.snoozes.stop()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("待办提醒管理器已停止")

    def get_status(self) -> dict[str, object]:
        return {
            "active": len(self.lifecycle),
            "snooze": self.snoozes.get_status(),
            "history_size": len(self.history),
            "first_run_done": self._first_run_done,
            "debug_capture_enabled": self.debug_capture.enabled,
            "inflight_actions": len(self._tasks),
        }

    # ----------------- 收到提醒 ----------------
    async def handle_payload(self, raw: Any) -> Optional[Reminder]:
        """处理一条后端推送，返回已派发的提醒；与待确认完成的提醒 id 相同时返回 None"""
        if self.debug_capture.record(raw, self.clock.now()):
            await self._persist_debug_capture()

        fallback = False
        try:
            reminder = self.normalizer.from_payload(decode(raw))
        except NormalizationError as e:
            logger.warning(f"待办提醒消息解析失败，按纯文本兜底: {e}")
            reminder = self.normalizer.wrap_legacy(raw)
            fallback = True

        self.metrics.record_received(fallback=fallback)
        self.bus.emit(E.REMINDER_RECEIVED, reminder=reminder, fallback=fallback)

        if self.lifecycle.is_provisional(reminder.id):
            logger.warning(f"提醒正在等待完成确认，忽略新推送: reminder_id={reminder.id}")
            return None
        if reminder.id in self.snoozes:
            await self.snoozes.cancel(reminder.id)

        show_help = await self._consume_first_run()
        self.dispatcher.dispatch(reminder, show_help=show_help)
        return reminder

    async def _consume_first_run(self) -> bool:
        if self._first_run_done:
            return False
        self._first_run_done = True
        if self.kv is not None:
            try:
                await self.kv.set_json(FIRST_RUN_KEY, True)
            except PersistenceFailure as e:
                self.metrics.record_persistence_error()
                logger.opt(exception=e).error("首次运行标记持久化失败")
        return True

    # ----------------- 用户操作 ----------------
    def on_user_action(self, action: UserAction, reminder_id: str) -> None:
        """弹窗句柄的回调，实际处理放到独立任务中执行"""
        action = UserAction(action)
        logger.debug(f"收到用户操作: action={action.value}, reminder_id={reminder_id}")
        if action == UserAction.VIEW:
            self.view(reminder_id)
            return
        if action == UserAction.COMPLETE:
            coro = self.complete(reminder_id)
        elif action == UserAction.SNOOZE:
            coro = self.snooze(reminder_id)
        else:
            coro = self.dismiss(reminder_id)
        task = asyncio.create_task(coro, name=f"reminder-{action.value}-{reminder_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"处理用户操作时发生预期外的错误: task={task.get_name()}")

    async def complete(self, reminder_id: str) -> bool:
        reminder = self.lifecycle.get(reminder_id)
        try:
            self.lifecycle.transition(reminder_id, ReminderAction.COMPLETE)
        except Conflict as e:
            logger.debug(f"重复的完成操作已丢弃: {e}")
            return False
        except InvalidTransition as e:
            logger.warning(f"忽略非法操作: {e}")
            return False

        attempt = self.lifecycle.attempt_of(reminder_id)
        completed_at = self.clock.now()
        failure: Optional[Exception] = None
        if self.backend is not None:
            try:
                await self.backend.confirm_complete(reminder, completed_at)
            except BackendSyncFailure as e:
                failure = e
            except asyncio.CancelledError:
                self.lifecycle.rollback(reminder_id, attempt)
                raise
            except Exception as e:
                logger.opt(exception=e).error(f"后端同步出现预期外的错误: reminder_id={reminder_id}")
                failure = e

        if failure is not None:
            restored = self.lifecycle.rollback(reminder_id, attempt)
            if restored is None:
                logger.info(f"提醒已不再跟踪，丢弃迟到的失败结果: reminder_id={reminder_id}")
                return False
            self.metrics.record_rolled_back()
            self.bus.emit(E.REMINDER_ROLLED_BACK, reminder=restored, error=str(failure))
            logger.warning(f"完成操作未获后端确认，已回滚: reminder_id={reminder_id}, error={failure}")
            self.presenter.notify(COMPLETE_FAILURE_NOTICE, "error")
            return False

        tracked = self.lifecycle.confirm(reminder_id, attempt)
        if tracked is None:
            logger.info(f"提醒已不再跟踪，丢弃迟到的确认结果: reminder_id={reminder_id}")
            return False
        if tracked.handle is not None:
            tracked.handle.remove()

        await self.history.append(
            HistoryAction.COMPLETED,
            tracked.reminder,
            self._history_metadata(tracked.reminder, completed_at, completedAt=to_iso(completed_at)),
        )
        self.metrics.record_action(HistoryAction.COMPLETED.value)
        self.bus.emit(E.REMINDER_COMPLETED, reminder=tracked.reminder)
        logger.info(f"待办已完成: reminder_id={reminder_id}")
        self.presenter.notify(COMPLETE_SUCCESS_NOTICE, "success")
        return True

    async def snooze(
        self,
        reminder_id: str,
        due_at: Optional[datetime] = None,
        minutes: Optional[int] = None,
    ) -> Optional[SnoozeEntry]:
        reminder = self.lifecycle.get(reminder_id)
        handle = self.lifecycle.get_handle(reminder_id)
        now = self.clock.now()
        if due_at is None:
            due_at = now + timedelta(minutes=minutes if minutes is not None else self.snooze_default_minutes)

        try:
            entry = await self.snoozes.schedule(reminder_id, due_at)
        except InvalidSnoozeTime as e:
            logger.warning(f"忽略稍后提醒请求: {e}")
            return None
        except Conflict as e:
            logger.debug(f"重复的稍后提醒操作已丢弃: {e}")
            return None
        except InvalidTransition as e:
            logger.warning(f"忽略非法操作: {e}")
            return None

        if handle is not None:
            handle.remove()
        await self.history.append(
            HistoryAction.SNOOZED,
            reminder,
            self._history_metadata(reminder, now, dueAt=to_iso(entry.due_at)),
        )
        self.metrics.record_action(HistoryAction.SNOOZED.value)
        self.bus.emit(E.REMINDER_SNOOZED, reminder=reminder, due_at=entry.due_at)
        return entry

    async def dismiss(self, reminder_id: str) -> bool:
        reminder = self.lifecycle.get(reminder_id)
        handle = self.lifecycle.get_handle(reminder_id)
        try:
            self.lifecycle.transition(reminder_id, ReminderAction.DISMISS)
        except Conflict as e:
            logger.debug(f"重复的忽略操作已丢弃: {e}")
            return False
        except InvalidTransition as e:
            logger.warning(f"忽略非法操作: {e}")
            return False

        if handle is not None:
            handle.remove()
        await self.history.append(
            HistoryAction.DISMISSED,
            reminder,
            self._history_metadata(reminder, self.clock.now()),
        )
        self.metrics.record_action(HistoryAction.DISMISSED.value)
        self.bus.emit(E.REMINDER_DISMISSED, reminder=reminder)
        logger.info(f"提醒已忽略: reminder_id={reminder_id}")
        return True

    def view(self, reminder_id: str) -> bool:
        tracked = self.lifecycle.remove(reminder_id)
        if tracked is None:
            logger.warning(f"查看的提醒不存在: reminder_id={reminder_id}")
            return False
        if tracked.handle is not None:
            tracked.handle.remove()
        self.bus.emit(E.UI_VIEW_TODO, reminder_id=reminder_id)
        logger.info(f"打开待办详情: reminder_id={reminder_id}")
        return True

    def clear_all(self) -> int:
        removed = self.lifecycle.clear()
        for tracked in removed:
            if tracked.handle is not None:
                tracked.handle.remove()
        logger.info(f"已清空所有提醒弹窗: count={len(removed)}")
        return len(removed)

    def active_reminders(self) -> List[Reminder]:
        return self.lifecycle.active()

    # ----------------- 调试捕获 ----------------
    async def set_debug_capture(self, enabled: bool) -> None:
        self.debug_capture.enabled = enabled
        if not enabled:
            self.debug_capture.clear()
            await self._persist_debug_capture()
        logger.info(f"原始消息调试捕获: enabled={enabled}")

    async def _persist_debug_capture(self) -> None:
        if self.kv is None:
            return
        try:
            await self.kv.set_json(DEBUG_CAPTURE_KEY, self.debug_capture.snapshot())
        except PersistenceFailure as e:
            self.metrics.record_persistence_error()
            logger.opt(exception=e).error("调试捕获持久化失败")

    @staticmethod
    def _deadline_of(reminder: Reminder) -> Optional[datetime]:
        """待办截止时间; 没有 deadline 时，晚于收到时间的计划时间也视为截止时间"""
        if reminder.deadline is not None:
            return reminder.deadline
        scheduled = reminder.scheduled_time
        if scheduled is not None and reminder.received_at is not None and scheduled > reminder.received_at:
            return scheduled
        return None

    @classmethod
    def _history_metadata(cls, reminder: Reminder, now: datetime, **extra: Any) -> Dict[str, Any]:
        deadline = cls._deadline_of(reminder)
        overdue = (
            reminder.kind == ReminderKind.OVERDUE
            or reminder.source_status == "overdue"
            or (deadline is not None and deadline < now)
        )
        metadata: Dict[str, Any] = {
            "scheduledTime": to_iso(reminder.scheduled_time),
            "deadline": to_iso(deadline),
            "receivedAt": to_iso(reminder.received_at),
            "snoozeCount": reminder.snooze_count,
            "tags": list(reminder.tags),
            "status": reminder.source_status,
            "overdueInfo": reminder.overdue_info,
            "overdue": overdue,
        }
        metadata.update(extra)
        return metadata


_manager: TodoReminderManager | None = None


def configure_manager(manager: TodoReminderManager) -> None:
    global _manager
    _manager = manager


def require_manager() -> TodoReminderManager:
    if _manager is None:
        raise RuntimeError("TodoReminderManager 尚未配置，请先调用 configure_manager()")
    return _manager
