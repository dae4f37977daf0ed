"""稍后提醒调度

用户选择“稍后提醒”后，提醒从活跃集合中移除并转为 SnoozeEntry 保存在队列中。
扫描循环定期检查队列，到期条目以全新的 PENDING 提醒重新交给 Dispatcher(不再经过标准化)。

扫描循环在第一次 schedule 时按需启动，队列清空后自动退出，重复启动请求不会产生第二个循环。
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from todo_reminder.core.dispatcher import Dispatcher
from todo_reminder.core.lifecycle import LifecycleStore
from todo_reminder.datamodel import Reminder, ReminderAction, ReminderStatus, SnoozeEntry
from todo_reminder.errors import BackendSyncFailure, InvalidSnoozeTime, InvalidTransition, PersistenceFailure
from todo_reminder.events import Bus, E, bus as default_bus
from todo_reminder.logger import logger
from todo_reminder.metrics import RuntimeMetrics, runtime_metrics
from todo_reminder.storage.kv import SNOOZE_QUEUE_KEY, KVStore
from todo_reminder.sync.backend import BackendSync
from todo_reminder.utils import Clock, to_iso

__all__ = ["SnoozeScheduler"]


class SnoozeScheduler:
    def __init__(
        self,
        lifecycle: LifecycleStore,
        dispatcher: Dispatcher,
        clock: Clock,
        kv: Optional[KVStore] = None,
        backend: Optional[BackendSync] = None,
        interval: float = 30.0,
        fire_missed_on_startup: bool = False,
        bus: Optional[Bus] = None,
        metrics: Optional[RuntimeMetrics] = None,
    ) -> None:
        self.lifecycle = lifecycle
        self.dispatcher = dispatcher
        self.clock = clock
        self.kv = kv
        self.backend = backend
        self.interval = interval
        self.fire_missed_on_startup = fire_missed_on_startup
        self.bus = bus or default_bus
        self.metrics = metrics or runtime_metrics
        self._queue: Dict[str, SnoozeEntry] = {}
        self._task: Optional[asyncio.Task] = None
        self._last_scan_at: float | None = None

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, reminder_id: str) -> bool:
        return reminder_id in self._queue

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def entries(self) -> List[SnoozeEntry]:
        return sorted(self._queue.values(), key=lambda e: e.due_at)

    async def schedule(self, reminder: Reminder | str, due_at: datetime) -> SnoozeEntry:
        """把一条 PENDING 提醒转入稍后提醒队列

        Raises:
            InvalidSnoozeTime: due_at 不晚于当前时间
            InvalidTransition: 提醒不在活跃集合中或不是 PENDING
            Conflict: 该提醒的完成确认仍在进行中
        """
        reminder_id = reminder if isinstance(reminder, str) else reminder.id
        now = self.clock.now()
        due_at = self.clock.localize(due_at)
        if due_at <= now:
            raise InvalidSnoozeTime(f"稍后提醒时间必须晚于当前时间: due_at={to_iso(due_at)}, now={to_iso(now)}")

        current = self.lifecycle.get(reminder_id)
        if current is None:
            raise InvalidTransition(reminder_id, None, ReminderAction.SNOOZE)
        self.lifecycle.transition(reminder_id, ReminderAction.SNOOZE)

        entry = SnoozeEntry(
            reminder_id=reminder_id,
            snapshot=current.copy(status=ReminderStatus.SNOOZED),
            due_at=due_at,
            original_scheduled_at=current.scheduled_time,
            created_at=now,
        )
        self._queue[reminder_id] = entry
        await self._persist()
        logger.info(f"已设置稍后提醒: reminder_id={reminder_id}, due_at={to_iso(due_at)}, queue={len(self._queue)}")
        self.ensure_running()

        if self.backend is not None:
            try:
                await self.backend.notify_snooze(current, due_at)
            except BackendSyncFailure as e:
                logger.warning(f"稍后提醒时间同步到后端失败，仅在本地生效: reminder_id={reminder_id}, error={e}")
        return entry

    async def cancel(self, reminder_id: str) -> Optional[SnoozeEntry]:
        """取消稍后提醒(同 id 的新提醒到达时使用)"""
        entry = self._queue.pop(reminder_id, None)
        if entry is not None:
            await self._persist()
            logger.info(f"已取消稍后提醒: reminder_id={reminder_id}")
        return entry

    async def scan(self) -> int:
        """将所有到期(due_at <= now)的条目重新派发，返回唤起的数量"""
        now = self.clock.now()
        due = sorted((e for e in self._queue.values() if e.due_at <= now), key=lambda e: e.due_at)
        if not due:
            return 0

        for entry in due:
            del self._queue[entry.reminder_id]
            reborn = entry.snapshot.copy(
                status=ReminderStatus.PENDING,
                snooze_count=entry.snapshot.snooze_count + 1,
                received_at=None,
            )
            self.dispatcher.dispatch(reborn)
            self.bus.emit(E.SNOOZE_PROMOTED, reminder=reborn, due_at=entry.due_at)
            logger.info(f"稍后提醒已到期: reminder_id={entry.reminder_id}, snooze_count={reborn.snooze_count}")

        await self._persist()
        self.metrics.record_promoted(len(due))
        return len(due)

    async def load(self) -> int:
        """启动时恢复队列，已过期条目按配置丢弃或保留(保留的会在第一次扫描时立即唤起)"""
        if self.kv is None:
            return 0
        try:
            raw = await self.kv.get_json(SNOOZE_QUEUE_KEY, [])
        except PersistenceFailure as e:
            self.metrics.record_persistence_error()
            logger.opt(exception=e).error("读取稍后提醒队列失败，使用空队列")
            return 0

        now = self.clock.now()
        dropped = 0
        for item in raw if isinstance(raw, list) else []:
            try:
                entry = SnoozeEntry.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"跳过无法解析的稍后提醒: {e}")
                dropped += 1
                continue
            entry.due_at = self.clock.localize(entry.due_at)
            if entry.due_at <= now and not self.fire_missed_on_startup:
                logger.info(f"丢弃启动前已过期的稍后提醒: reminder_id={entry.reminder_id}, due_at={to_iso(entry.due_at)}")
                dropped += 1
                continue
            if entry.reminder_id in self.lifecycle:
                dropped += 1
                continue
            self._queue[entry.reminder_id] = entry

        if dropped:
            await self._persist()
        logger.info(f"已加载稍后提醒队列: count={len(self._queue)}, dropped={dropped}")
        if self._queue:
            self.ensure_running()
        return len(self._queue)

    def ensure_running(self) -> bool:
        """启动扫描循环，已在运行时什么都不做"""
        if self.running:
            return False
        self._task = asyncio.create_task(self._main_loop(), name="snooze-scan")
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def get_status(self) -> dict[str, Any]:
        entries = self.entries()
        return {
            "running": self.running,
            "queue_size": len(entries),
            "interval_seconds": self.interval,
            "last_scan_at_epoch": self._last_scan_at,
            "next_due_at": to_iso(entries[0].due_at) if entries else None,
        }

    async def _main_loop(self) -> None:
        logger.info("稍后提醒扫描循环已启动")
        try:
            while True:
                self._last_scan_at = time.time()
                try:
                    await self.scan()
                except Exception as e:
                    logger.opt(exception=e).error("稍后提醒扫描失败")
                if not self._queue:
                    break
                await asyncio.sleep(self.interval)
        finally:
            logger.info("稍后提醒扫描循环已停止")

    async def _persist(self) -> None:
        if self.kv is None:
            return
        try:
            await self.kv.set_json(SNOOZE_QUEUE_KEY, [entry.to_dict() for entry in self.entries()])
        except PersistenceFailure as e:
            self.metrics.record_persistence_error()
            logger.opt(exception=e).error("稍后提醒队列持久化失败，本次变更仅保留在内存中")
