"""嵌入主进程运行的管理 HTTP 服务

服务与 TodoReminderManager 共用同一个事件循环; shutdown_event 被设置后 uvicorn 退出，
管理端口无法绑定时同样设置 shutdown_event，由 main.py 统一关闭其余组件。
"""

from __future__ import annotations

import asyncio
import contextlib
import time

import uvicorn

from todo_reminder.config.settings import ADMIN_HTTP_HOST, ADMIN_HTTP_PORT
from todo_reminder.core.manager import TodoReminderManager
from todo_reminder.logger import logger

from .app import create_app
from .schemas import RuntimeControl

__all__ = ["build_server", "serve_admin"]


def build_server(control: RuntimeControl, host: str = ADMIN_HTTP_HOST, port: int = ADMIN_HTTP_PORT) -> uvicorn.Server:
    config = uvicorn.Config(
        create_app(control),
        host=host,
        port=port,
        log_level="info",
        access_log=False,
    )
    server = uvicorn.Server(config)
    # 系统信号由 main.py 处理
    server.install_signal_handlers = lambda: None
    return server


async def _stop_on_shutdown(shutdown_event: asyncio.Event, server: uvicorn.Server) -> None:
    await shutdown_event.wait()
    logger.debug("收到关闭信号，停止管理 HTTP 服务")
    server.should_exit = True


async def serve_admin(
    manager: TodoReminderManager,
    shutdown_event: asyncio.Event,
    host: str = ADMIN_HTTP_HOST,
    port: int = ADMIN_HTTP_PORT,
) -> None:
    control = RuntimeControl(shutdown_event=shutdown_event, started_at=time.time(), manager=manager)
    server = build_server(control, host, port)

    watcher = asyncio.create_task(_stop_on_shutdown(shutdown_event, server), name="admin-http-watcher")
    logger.info(f"待办提醒管理 API 准备启动: http://{host}:{port}/api/v1/health")
    try:
        await server.serve()
    except SystemExit as e:
        # uvicorn 绑定端口失败时直接 sys.exit
        logger.error(f"待办提醒管理 API 启动失败，准备关闭服务: exit_code={e.code}")
        shutdown_event.set()
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
        logger.info("待办提醒管理 API 已关闭")
