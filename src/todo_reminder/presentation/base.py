"""展示层与音效的协作接口

弹窗的渲染与提示音的合成都在引擎之外实现，这里只约定边界:
- Presenter.render(directive) 返回弹窗句柄，句柄负责关闭弹窗并回传用户操作;
- AudioPlayer.play(profile) 只管播放，不关心返回值。

默认的 Bus* 实现把指令广播到事件总线，由桌面外壳订阅后完成真正的渲染。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from todo_reminder.datamodel import RenderDirective, ToneProfile, UserAction
from todo_reminder.events import Bus, E, bus as default_bus
from todo_reminder.logger import logger

__all__ = [
    "UserActionCallback", "ReminderHandle", "Presenter", "AudioPlayer",
    "BusReminderHandle", "BusPresenter", "BusAudioPlayer",
]

UserActionCallback = Callable[[UserAction, str], None]


class ReminderHandle(ABC):
    @abstractmethod
    def remove(self) -> None:
        pass

    @abstractmethod
    def on_user_action(self, callback: UserActionCallback) -> None:
        pass


class Presenter(ABC):
    @abstractmethod
    def render(self, directive: RenderDirective) -> ReminderHandle:
        pass

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        """短暂、非阻塞的提示(toast)"""
        pass


class AudioPlayer(ABC):
    @abstractmethod
    def play(self, profile: ToneProfile) -> None:
        pass


class BusReminderHandle(ReminderHandle):
    def __init__(self, reminder_id: str, bus: Bus) -> None:
        self.reminder_id = reminder_id
        self._bus = bus
        self._callbacks: List[UserActionCallback] = []
        self.removed = False

    def remove(self) -> None:
        if self.removed:
            return
        self.removed = True
        self._bus.emit(E.UI_REMOVE, reminder_id=self.reminder_id)

    def on_user_action(self, callback: UserActionCallback) -> None:
        self._callbacks.append(callback)

    def trigger(self, action: UserAction | str) -> None:
        """外壳收到用户点击后调用"""
        action = UserAction(action)
        for callback in self._callbacks:
            callback(action, self.reminder_id)


class BusPresenter(Presenter):
    def __init__(self, bus: Optional[Bus] = None) -> None:
        self._bus = bus or default_bus

    def render(self, directive: RenderDirective) -> BusReminderHandle:
        self._bus.emit(E.UI_RENDER, directive=directive.to_dict())
        return BusReminderHandle(directive.reminder_id, self._bus)

    def notify(self, message: str, level: str = "info") -> None:
        logger.debug(f"提示: level={level}, message={message}")
        self._bus.emit(E.UI_TOAST, message=message, level=level)


class BusAudioPlayer(AudioPlayer):
    def __init__(self, bus: Optional[Bus] = None) -> None:
        self._bus = bus or default_bus

    def play(self, profile: ToneProfile) -> None:
        self._bus.emit(
            E.AUDIO_PLAY,
            profile=profile.name,
            tones=[
                {
                    "frequencyHz": t.frequency_hz,
                    "gain": t.gain,
                    "durationMs": t.duration_ms,
                    "delayMs": t.delay_ms,
                }
                for t in profile.tones
            ],
        )
