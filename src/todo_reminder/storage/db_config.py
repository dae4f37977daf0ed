import os

import aiosqlite

from todo_reminder.logger import logger

conn: aiosqlite.Connection | None = None

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at_utc TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """打开数据库并执行结构升级，":memory:" 用于测试"""
    if db_path != ":memory:":
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
    global conn
    conn = await aiosqlite.connect(db_path)

    async with conn.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
        user_version = row[0]

    if user_version == 0:
        await conn.executescript(_SCHEMA_V1)
        await conn.execute("PRAGMA user_version = 1")
        logger.info(f"数据库已初始化: path={db_path}")

    # 数据库升级逻辑可以在这里继续添加
    await conn.commit()
    return conn


async def close_db() -> None:
    global conn
    if conn is not None:
        await conn.close()
        conn = None


__all__ = ["conn", "init_db", "close_db"]
