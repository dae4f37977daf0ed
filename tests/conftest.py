"""
Pytest configuration and shared fixtures for the reminder engine tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

import todo_reminder.storage.db_config as db_config
from todo_reminder.core.dispatcher import Dispatcher
from todo_reminder.core.lifecycle import LifecycleStore
from todo_reminder.datamodel import Priority, Reminder, ReminderKind, RenderDirective, ToneProfile, UserAction
from todo_reminder.events import Bus
from todo_reminder.metrics import RuntimeMetrics
from todo_reminder.presentation.base import AudioPlayer, Presenter, ReminderHandle, UserActionCallback
from todo_reminder.storage.kv import KVStore
from todo_reminder.sync.backend import BackendSync
from todo_reminder.utils import Clock

TZ = timezone(timedelta(hours=8))
# Monday
START = datetime(2026, 3, 16, 9, 0, 0, tzinfo=TZ)
BACKEND_URL = "http://backend.test"


class FakeClock(Clock):
    """Clock that only moves when told to"""

    def __init__(self, start: datetime = START) -> None:
        super().__init__(start.tzinfo)
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, when: datetime) -> None:
        self.current = when


class RecordingHandle(ReminderHandle):
    def __init__(self, reminder_id: str) -> None:
        self.reminder_id = reminder_id
        self.removed = False
        self.callbacks: List[UserActionCallback] = []

    def remove(self) -> None:
        self.removed = True

    def on_user_action(self, callback: UserActionCallback) -> None:
        self.callbacks.append(callback)

    def trigger(self, action: UserAction) -> None:
        for callback in self.callbacks:
            callback(action, self.reminder_id)


class RecordingPresenter(Presenter):
    def __init__(self) -> None:
        self.directives: List[RenderDirective] = []
        self.handles: Dict[str, RecordingHandle] = {}
        self.notices: List[tuple[str, str]] = []
        self.on_render: Optional[Callable[[RenderDirective], None]] = None

    def render(self, directive: RenderDirective) -> RecordingHandle:
        if self.on_render is not None:
            self.on_render(directive)
        self.directives.append(directive)
        handle = RecordingHandle(directive.reminder_id)
        self.handles[directive.reminder_id] = handle
        return handle

    def notify(self, message: str, level: str = "info") -> None:
        self.notices.append((message, level))


class RecordingAudio(AudioPlayer):
    def __init__(self) -> None:
        self.profiles: List[ToneProfile] = []

    def play(self, profile: ToneProfile) -> None:
        self.profiles.append(profile)


def make_reminder(
    reminder_id: str = "todo-1",
    kind: ReminderKind = ReminderKind.NORMAL,
    priority: Priority = Priority.MEDIUM,
    title: str = "Write weekly report",
    content: str = "Send it before Friday",
    **kwargs,
) -> Reminder:
    return Reminder(id=reminder_id, kind=kind, priority=priority, title=title, content=content, **kwargs)


def make_backend(handler, token: Optional[str] = "access-token", metrics: Optional[RuntimeMetrics] = None) -> BackendSync:
    async def provide():
        return token

    return BackendSync(
        base_url=BACKEND_URL,
        token_provider=provide,
        transport=httpx.MockTransport(handler),
        metrics=metrics or RuntimeMetrics(),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return Bus()


@pytest.fixture
def presenter():
    return RecordingPresenter()


@pytest.fixture
def audio():
    return RecordingAudio()


@pytest.fixture
def metrics():
    return RuntimeMetrics()


@pytest.fixture
def lifecycle():
    return LifecycleStore()


@pytest.fixture
def dispatcher(lifecycle, presenter, audio, clock, bus, metrics):
    return Dispatcher(lifecycle, presenter, audio, clock, bus=bus, metrics=metrics)


@pytest_asyncio.fixture
async def kv():
    """In-memory aiosqlite store"""
    conn = await db_config.init_db(":memory:")
    yield KVStore(conn)
    await db_config.close_db()
