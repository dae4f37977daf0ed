import asyncio
import signal

from todo_reminder.config.settings import (
    BACKEND_AUTH_TOKEN,
    BACKEND_BASE_URL,
    BACKEND_TIMEOUT_SECONDS,
    BACKEND_TODO_UPDATE_PATH,
    CONSOLE_LOG_LEVEL,
    LOG_FILE,
    LOG_LEVEL,
    TODO_DB_PATH,
    USER_TIMEZONE,
)
from todo_reminder.logger import logger, setup_logging

import todo_reminder.storage.db_config as db_config
from todo_reminder.admin.http_server import serve_admin
from todo_reminder.core.manager import TodoReminderManager, configure_manager
from todo_reminder.events import bus
from todo_reminder.presentation.base import BusAudioPlayer, BusPresenter
from todo_reminder.storage.kv import KVStore
from todo_reminder.sync.backend import BackendSync, kv_token_provider
from todo_reminder.utils import Clock

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


def build_manager(kv: KVStore) -> TodoReminderManager:
    backend = BackendSync(
        base_url=BACKEND_BASE_URL,
        path=BACKEND_TODO_UPDATE_PATH,
        timeout=BACKEND_TIMEOUT_SECONDS,
        token_provider=kv_token_provider(kv, fallback=BACKEND_AUTH_TOKEN),
    )
    return TodoReminderManager(
        presenter=BusPresenter(bus),
        audio=BusAudioPlayer(bus),
        clock=Clock(USER_TIMEZONE),
        kv=kv,
        backend=backend,
        bus=bus,
    )


async def main():
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    conn = await db_config.init_db(TODO_DB_PATH)
    manager = build_manager(KVStore(conn))
    configure_manager(manager)

    try:
        await manager.start()
        await serve_admin(manager, shutdown_event)
    finally:
        logger.info("关闭待办提醒管理器...")
        await manager.stop()

        logger.info("关闭数据库连接...")
        await db_config.close_db()
        logger.info("待办提醒服务已关闭")


def run() -> None:
    setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE, console_level=CONSOLE_LOG_LEVEL)
    logger.info("启动待办提醒服务...")
    asyncio.run(main())


if __name__ == "__main__":
    run()
