from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

__all__ = ["Clock", "now_utc", "parse_timestamp", "to_iso", "from_iso",
           "start_of_day", "format_relative_time"]


def now_utc() -> datetime:
    """获取当前 UTC 时间"""
    return datetime.now(timezone.utc)


class Clock:
    """时钟抽象

    分类、日期分桶与稍后提醒的到期判断都通过它取“现在”，测试中可替换为固定时钟。
    """

    def __init__(self, tz: str | tzinfo = "UTC") -> None:
        self.tz: tzinfo = ZoneInfo(tz) if isinstance(tz, str) else tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def localize(self, dt: datetime) -> datetime:
        """将时间换算到时钟所在时区，无时区信息的时间视为该时区本地时间"""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=self.tz)
        return dt.astimezone(self.tz)


def parse_timestamp(value: Any, tz: tzinfo | None = None) -> datetime | None:
    """解析后端推送的时间字段

    支持 ISO 8601 字符串(含 'Z' 后缀)、"YYYY-MM-DD HH:MM" 以及秒/毫秒级时间戳。
    无法识别时返回 None。
    """
    tz = tz or timezone.utc
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=tz)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            value = int(text)
        else:
            if text.endswith(("Z", "z")):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=tz)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) > 1e11 else value  # 前端/后端常用毫秒时间戳
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).astimezone(tz)
        except (OverflowError, OSError, ValueError):
            return None
    return None


def to_iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def from_iso(text: str | None) -> datetime | None:
    if not text:
        return None
    return datetime.fromisoformat(text)


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def format_relative_time(when: datetime, now: datetime) -> str:
    """生成弹窗中展示的相对时间文案，例如“5 分钟前”“明天 09:30”"""
    when_local = when.astimezone(now.tzinfo) if now.tzinfo else when
    diff = (when_local - now).total_seconds()

    if diff < 0:
        elapsed = abs(diff)
        if elapsed < 60:
            return "刚才"
        if elapsed < 3600:
            return f"{int(elapsed // 60)} 分钟前"
        if elapsed < 86400:
            return f"{int(elapsed // 3600)} 小时前"
        return f"{int(elapsed // 86400)} 天前"

    hm = f"{when_local.hour:02d}:{when_local.minute:02d}"
    if diff < 60:
        return "马上"
    if diff < 3600:
        return f"{int(diff // 60)} 分钟后"
    if diff < 86400:
        return f"今天 {hm}"
    if diff < 2 * 86400:
        return f"明天 {hm}"
    return f"{when_local.month}月{when_local.day}日 {hm}"
