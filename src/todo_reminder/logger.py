"""待办提醒服务的日志配置

run() 启动时调用一次 setup_logging，之后各模块直接 `from todo_reminder.logger import logger`。
作为库嵌入或在测试中使用时不调用 setup_logging，沿用 loguru 默认的 stderr 输出。

写入三个 sink:
- 控制台，级别由 CONSOLE_LOG_LEVEL 决定;
- LOG_FILE 主日志;
- 同目录下的 <stem>_error<suffix>，只收 ERROR 及以上，保留时间更长。

管理 API 的 /api/v1/logs 按 "| LEVEL |" 段过滤文件日志，修改 FILE_FORMAT 时需保留这一段。
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Literal, Union

from loguru import logger

__all__ = ["setup_logging", "error_log_path", "logger"]

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "FATAL"]

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | "
    "{name}:{function}:{line} - {message}"
)

ROTATION = "10 MB"
RETENTION = "30 days"
ERROR_RETENTION = "90 days"


def _level_name(level: Union[str, LogLevel]) -> str:
    name = str(level).strip().upper()
    return "CRITICAL" if name == "FATAL" else name


def error_log_path(log_file: Union[str, Path]) -> Path:
    """主日志文件对应的错误日志路径"""
    log_file = Path(log_file)
    return log_file.with_name(f"{log_file.stem}_error{log_file.suffix}")


def _file_sink(path: Path, level: str, retention: str) -> dict:
    return {
        "sink": path,
        "level": level,
        "format": FILE_FORMAT,
        "rotation": ROTATION,
        "retention": retention,
        "compression": "zip",
        "encoding": "utf-8",
    }


def setup_logging(
    log_level: LogLevel,
    log_file: Union[str, Path],
    console_level: LogLevel = "INFO",
) -> None:
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": _level_name(console_level),
                "format": CONSOLE_FORMAT,
                "colorize": True,
            },
            _file_sink(log_file, _level_name(log_level), RETENTION),
            _file_sink(error_log_path(log_file), "ERROR", ERROR_RETENTION),
        ]
    )
    logger.debug(f"日志已配置: file={log_file}, level={_level_name(log_level)}")
