import os

from dotenv import load_dotenv

from todo_reminder.logger import logger

load_dotenv()

__all__ = [
    "TODO_DB_PATH", "LOG_FILE", "LOG_LEVEL", "CONSOLE_LOG_LEVEL", "USER_TIMEZONE",
    "SNOOZE_SCAN_INTERVAL_SECONDS", "SNOOZE_DEFAULT_MINUTES", "SNOOZE_FIRE_MISSED_ON_STARTUP",
    "HISTORY_MAX_ENTRIES", "DEBUG_CAPTURE_ENABLED", "DEBUG_CAPTURE_SIZE",
    "BACKEND_BASE_URL", "BACKEND_TODO_UPDATE_PATH", "BACKEND_TIMEOUT_SECONDS", "BACKEND_AUTH_TOKEN",
    "ADMIN_HTTP_HOST", "ADMIN_HTTP_PORT", "ADMIN_AUTH_TOKEN", "WEBHOOK_SHARED_SECRET",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default
    if value < minimum:
        logger.warning(f"{name} 不能小于 {minimum}: {value}, 已回退到 {default}")
        return default
    return value


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default


# 存储与日志
TODO_DB_PATH = os.getenv("TODO_DB_PATH", "data/todo_reminder.db")
LOG_FILE = os.getenv("LOG_FILE", "logs/todo_reminder.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG").strip().upper()
CONSOLE_LOG_LEVEL = os.getenv("CONSOLE_LOG_LEVEL", "INFO").strip().upper()

# 用户时区，用于日期分桶(今天/昨天/本周/本月)与趋势统计
USER_TIMEZONE = os.getenv("USER_TIMEZONE", "Asia/Shanghai")

# 稍后提醒
SNOOZE_SCAN_INTERVAL_SECONDS = _parse_float("SNOOZE_SCAN_INTERVAL_SECONDS", 30.0)
if SNOOZE_SCAN_INTERVAL_SECONDS <= 0:
    logger.warning("SNOOZE_SCAN_INTERVAL_SECONDS 必须大于 0, 已回退到 30 秒")
    SNOOZE_SCAN_INTERVAL_SECONDS = 30.0
SNOOZE_DEFAULT_MINUTES = _parse_int("SNOOZE_DEFAULT_MINUTES", 10, minimum=1)
# 启动时已过期的稍后提醒: False 表示静默丢弃, True 表示立即补发
SNOOZE_FIRE_MISSED_ON_STARTUP = _parse_bool("SNOOZE_FIRE_MISSED_ON_STARTUP", False)

# 历史记录
HISTORY_MAX_ENTRIES = _parse_int("HISTORY_MAX_ENTRIES", 1000, minimum=1)

# 原始消息调试捕获
DEBUG_CAPTURE_ENABLED = _parse_bool("DEBUG_CAPTURE_ENABLED", False)
DEBUG_CAPTURE_SIZE = _parse_int("DEBUG_CAPTURE_SIZE", 50, minimum=1)

# 后端同步
BACKEND_BASE_URL = os.getenv("BACKEND_BASE_URL", "http://127.0.0.1:8000").rstrip("/")
BACKEND_TODO_UPDATE_PATH = os.getenv("BACKEND_TODO_UPDATE_PATH", "/api/todo/update")
BACKEND_TIMEOUT_SECONDS = _parse_float("BACKEND_TIMEOUT_SECONDS", 10.0)
BACKEND_AUTH_TOKEN = os.getenv("BACKEND_AUTH_TOKEN", "")

# Admin API
ADMIN_HTTP_HOST = os.getenv("ADMIN_HTTP_HOST", "127.0.0.1")
ADMIN_HTTP_PORT = _parse_int("ADMIN_HTTP_PORT", 18081, minimum=1)
ADMIN_AUTH_TOKEN = os.getenv("ADMIN_AUTH_TOKEN", "")

WEBHOOK_SHARED_SECRET = os.getenv("WEBHOOK_SHARED_SECRET", "")
