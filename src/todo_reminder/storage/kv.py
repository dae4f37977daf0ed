"""键值持久化

稍后提醒队列、历史记录、首次运行标记等都以 JSON 形式存放在 kv_store 表中，
一次写入就是一次提交，写入完成即视为已落盘。
"""

from __future__ import annotations

import json
from typing import Any

import aiosqlite

from todo_reminder.errors import PersistenceFailure
from todo_reminder.logger import logger

__all__ = [
    "KVStore",
    "SNOOZE_QUEUE_KEY", "HISTORY_KEY", "FIRST_RUN_KEY", "DEBUG_CAPTURE_KEY", "ACCESS_TOKEN_KEY",
]

SNOOZE_QUEUE_KEY = "todo_reminder.snooze_queue"
HISTORY_KEY = "todo_reminder.history"
FIRST_RUN_KEY = "todo_reminder.first_run_done"
DEBUG_CAPTURE_KEY = "todo_reminder.debug_capture"
ACCESS_TOKEN_KEY = "auth.access_token"


class KVStore:
    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn

    async def get_json(self, key: str, default: Any = None) -> Any:
        try:
            async with self.conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceFailure(f"读取失败: key={key}, error={e}") from e
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning(f"存储内容损坏，按缺省值处理: key={key}")
            return default

    async def set_json(self, key: str, value: Any) -> None:
        try:
            text = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise PersistenceFailure(f"无法序列化: key={key}, error={e}") from e
        try:
            await self.conn.execute(
                "INSERT INTO kv_store (key, value, updated_at_utc) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at_utc = CURRENT_TIMESTAMP",
                (key, text),
            )
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceFailure(f"写入失败: key={key}, error={e}") from e
        logger.trace(f"已持久化: key={key}, bytes={len(text)}")

    async def delete(self, key: str) -> None:
        try:
            await self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await self.conn.commit()
        except aiosqlite.Error as e:
            raise PersistenceFailure(f"删除失败: key={key}, error={e}") from e
