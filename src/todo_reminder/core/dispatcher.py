"""提醒派发

每条进入派发的提醒恰好产生一次渲染指令与一次提示音(批量的逾期/汇总提醒也只响一次)，
随后以 PENDING 状态加入 LifecycleStore。渲染与提示音先于入库发生。
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from todo_reminder.core.classify import apply_routing_overrides, derive_summary
from todo_reminder.core.lifecycle import LifecycleStore
from todo_reminder.core.normalizer import DEFAULT_TITLE
from todo_reminder.datamodel import (
    Priority,
    Reminder,
    ReminderKind,
    ReminderStatus,
    RenderDirective,
    Tone,
    ToneProfile,
)
from todo_reminder.events import Bus, E, bus as default_bus
from todo_reminder.logger import logger
from todo_reminder.metrics import RuntimeMetrics, runtime_metrics
from todo_reminder.presentation.base import AudioPlayer, Presenter, ReminderHandle, UserActionCallback
from todo_reminder.utils import Clock, format_relative_time

__all__ = [
    "OVERDUE_TITLE", "DAILY_SUMMARY_TITLE", "SUMMARY_ITEM_LIMIT", "OVERDUE_ITEM_LIMIT",
    "priority_icon", "tone_profile_for", "build_directive", "Dispatcher",
]

OVERDUE_TITLE = "⚠️ 待办逾期提醒"
DAILY_SUMMARY_TITLE = "📋 今日待办汇总"
SUMMARY_ITEM_LIMIT = 5
OVERDUE_ITEM_LIMIT = 3

_PRIORITY_ICONS: Dict[Priority, str] = {
    Priority.HIGH: "🔴",
    Priority.MEDIUM: "🟡",
    Priority.LOW: "🟢",
    Priority.NORMAL: "🔵",
}

# 高优先级响两声，第二声音调更高
_TONE_PROFILES: Dict[Priority, ToneProfile] = {
    Priority.HIGH: ToneProfile(
        name="high",
        tones=(
            Tone(frequency_hz=800, gain=0.3, duration_ms=300),
            Tone(frequency_hz=900, gain=0.3, duration_ms=300, delay_ms=200),
        ),
    ),
    Priority.MEDIUM: ToneProfile(name="medium", tones=(Tone(frequency_hz=600, gain=0.2, duration_ms=200),)),
}
_DEFAULT_TONE = ToneProfile(name="normal", tones=(Tone(frequency_hz=400, gain=0.15, duration_ms=150),))


def priority_icon(priority: Priority) -> str:
    return _PRIORITY_ICONS.get(priority, _PRIORITY_ICONS[Priority.NORMAL])


def tone_profile_for(priority: Priority) -> ToneProfile:
    return _TONE_PROFILES.get(priority, _DEFAULT_TONE)


def build_directive(reminder: Reminder, now: datetime, show_help: bool = False) -> RenderDirective:
    items = list(reminder.items)
    shown_items = []
    more_count = 0
    title = reminder.title or DEFAULT_TITLE
    content = reminder.content
    # 没有计划时间时用后端发送时间
    shown_time = reminder.scheduled_time or reminder.sent_at

    if reminder.kind == ReminderKind.DAILY_SUMMARY:
        title = DAILY_SUMMARY_TITLE
        shown_items = items[:SUMMARY_ITEM_LIMIT]
        more_count = max(0, len(items) - SUMMARY_ITEM_LIMIT)
    elif reminder.kind == ReminderKind.OVERDUE:
        title = OVERDUE_TITLE
        if len(items) > 1:
            content = f"您有 {len(items)} 个待办事项已逾期"
            shown_items = items[:OVERDUE_ITEM_LIMIT]
            more_count = max(0, len(items) - OVERDUE_ITEM_LIMIT)
        elif items:
            content = items[0].content or reminder.content

    return RenderDirective(
        reminder_id=reminder.id,
        kind=reminder.kind,
        priority=reminder.priority,
        icon=priority_icon(reminder.priority),
        title=title,
        content=content,
        time_label=format_relative_time(shown_time, now) if shown_time else None,
        tags=list(reminder.tags),
        agent_name=reminder.agent_name,
        summary=reminder.summary,
        items=shown_items,
        more_count=more_count,
        shake=reminder.priority == Priority.HIGH,
        show_help=show_help,
    )


class Dispatcher:
    def __init__(
        self,
        lifecycle: LifecycleStore,
        presenter: Presenter,
        audio: AudioPlayer,
        clock: Clock,
        bus: Optional[Bus] = None,
        metrics: Optional[RuntimeMetrics] = None,
        on_user_action: Optional[UserActionCallback] = None,
    ) -> None:
        self.lifecycle = lifecycle
        self.presenter = presenter
        self.audio = audio
        self.clock = clock
        self.bus = bus or default_bus
        self.metrics = metrics or runtime_metrics
        self.on_user_action = on_user_action

    def dispatch(self, reminder: Reminder, *, show_help: bool = False) -> Optional[ReminderHandle]:
        if self.lifecycle.is_provisional(reminder.id):
            logger.warning(f"提醒正在等待完成确认，忽略重复派发: reminder_id={reminder.id}")
            return None

        now = self.clock.now()
        apply_routing_overrides(reminder)
        if reminder.kind == ReminderKind.DAILY_SUMMARY:
            reminder.summary = derive_summary(reminder, now)
        reminder.received_at = now
        reminder.status = ReminderStatus.PENDING

        directive = build_directive(reminder, now, show_help=show_help)
        handle: Optional[ReminderHandle] = None
        try:
            handle = self.presenter.render(directive)
        except Exception as e:
            logger.opt(exception=e).error(f"提醒弹窗渲染失败: reminder_id={reminder.id}")

        try:
            self.audio.play(tone_profile_for(reminder.priority))
        except Exception as e:
            logger.warning(f"播放提示音失败: {e}")

        if handle is not None and self.on_user_action is not None:
            handle.on_user_action(self.on_user_action)

        replaced = self.lifecycle.add(reminder, handle)
        if replaced is not None and replaced.handle is not None:
            replaced.handle.remove()

        self.metrics.record_dispatched()
        self.bus.emit(E.REMINDER_DISPATCHED, reminder=reminder)
        logger.info(
            f"派发提醒: reminder_id={reminder.id}, kind={reminder.kind.value}, "
            f"priority={reminder.priority.value}, items={len(reminder.items)}"
        )
        return handle
