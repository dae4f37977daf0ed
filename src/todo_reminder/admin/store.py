from __future__ import annotations

import re
from collections import deque
from pathlib import Path

_LOG_LEVEL_RE = re.compile(r"\|\s*([A-Z]+)\s*\|")
_ALLOWED_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def tail_lines(path: Path, lines: int) -> list[str]:
    if not path.exists():
        return []
    buf = deque(maxlen=lines)
    with path.open("r", encoding="utf-8", errors="replace") as f:
        for line in f:
            buf.append(line.rstrip("\n"))
    return list(buf)


def normalize_log_levels(levels: list[str] | None) -> set[str]:
    if not levels:
        return set()
    normalized: set[str] = set()
    for level in levels:
        lv = str(level).upper().strip()
        if lv in _ALLOWED_LOG_LEVELS:
            normalized.add(lv)
    return normalized


def filter_logs(
    lines: list[str],
    levels: list[str] | None = None,
    keyword: str | None = None,
) -> list[str]:
    """按日志级别(loguru 格式中 "| LEVEL |" 段)和关键字过滤"""
    target_levels = normalize_log_levels(levels)
    target_keyword = (keyword or "").strip().lower()

    if not target_levels and not target_keyword:
        return lines

    filtered: list[str] = []
    for line in lines:
        if target_levels:
            match = _LOG_LEVEL_RE.search(line)
            if not match or match.group(1) not in target_levels:
                continue
        if target_keyword and target_keyword not in line.lower():
            continue
        filtered.append(line)

    return filtered


def paginate(items: list, limit: int, offset: int) -> tuple[list, int, int]:
    limit = max(1, min(limit, 500))
    offset = max(0, offset)
    return items[offset:offset + limit], limit, offset
