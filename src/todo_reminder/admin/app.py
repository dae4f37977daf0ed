from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

import todo_reminder.storage.db_config as db_config
from todo_reminder.analytics.engine import ReportPeriod
from todo_reminder.config.settings import LOG_FILE
from todo_reminder.datamodel import HistoryAction, Priority, UserAction
from todo_reminder.logger import error_log_path, logger
from todo_reminder.storage.history import DateRange

from .auth import require_admin_auth, require_webhook_auth
from .schemas import DebugCaptureRequest, ReminderActionRequest, RuntimeControl, ShutdownRequest
from .store import filter_logs, paginate, tail_lines


def create_app(control: RuntimeControl) -> FastAPI:
    app = FastAPI(title="Todo Reminder Admin API", version="1.0.0")
    manager = control.manager

    def health_payload() -> dict[str, Any]:
        return {
            "status": "ok",
            "now_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "db_connected": db_config.conn is not None,
            "shutdown_requested": control.shutdown_event.is_set(),
        }

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/api/v1/health")
    async def api_health() -> dict[str, Any]:
        return health_payload()

    @app.get("/api/v1/metrics")
    async def get_metrics(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        return {
            "runtime": manager.metrics.snapshot(),
            "components": {
                "db": {"connected": db_config.conn is not None},
                "manager": manager.get_status(),
            },
            "active_tasks": len(asyncio.all_tasks()),
        }

    # ----------------- 活跃提醒 ----------------
    @app.get("/api/v1/reminders")
    async def get_reminders(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        items = []
        for reminder in manager.active_reminders():
            item = reminder.to_dict()
            item["provisional"] = manager.lifecycle.is_provisional(reminder.id)
            items.append(item)
        return {"items": items, "total": len(items)}

    @app.post("/api/v1/reminders/{reminder_id}/actions")
    async def post_reminder_action(
        reminder_id: str,
        payload: ReminderActionRequest,
        request: Request,
    ) -> dict[str, Any]:
        await require_admin_auth(request)
        if reminder_id not in manager.lifecycle:
            raise HTTPException(status_code=404, detail="提醒不存在或已结束")

        result: dict[str, Any] = {"reminder_id": reminder_id, "action": payload.action.value}
        if payload.action == UserAction.COMPLETE:
            result["ok"] = await manager.complete(reminder_id)
        elif payload.action == UserAction.SNOOZE:
            entry = await manager.snooze(reminder_id, due_at=payload.due_at, minutes=payload.minutes)
            result["ok"] = entry is not None
            result["due_at"] = entry.to_dict()["dueAt"] if entry is not None else None
        elif payload.action == UserAction.DISMISS:
            result["ok"] = await manager.dismiss(reminder_id)
        else:
            result["ok"] = manager.view(reminder_id)
        return result

    @app.get("/api/v1/snoozes")
    async def get_snoozes(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        items = [entry.to_dict() for entry in manager.snoozes.entries()]
        return {"items": items, "total": len(items), "status": manager.snoozes.get_status()}

    # ----------------- 历史记录 ----------------
    @app.get("/api/v1/history")
    async def get_history(
        request: Request,
        q: str | None = None,
        action: HistoryAction | None = None,
        priority: Priority | None = None,
        date_range: DateRange | None = Query(default=None, alias="range"),
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        await require_admin_auth(request)
        entries = manager.history.query(q=q, action=action, priority=priority, date_range=date_range)
        page, limit, offset = paginate(entries, limit, offset)
        return {
            "items": [entry.to_dict() for entry in page],
            "limit": limit,
            "offset": offset,
            "q": q,
            "action": action.value if action else None,
            "priority": priority.value if priority else None,
            "range": date_range.value if date_range else None,
            "total": len(entries),
        }

    @app.get("/api/v1/history/export")
    async def export_history(
        request: Request,
        q: str | None = None,
        action: HistoryAction | None = None,
        priority: Priority | None = None,
        date_range: DateRange | None = Query(default=None, alias="range"),
    ) -> dict[str, Any]:
        await require_admin_auth(request)
        if q or action or priority or date_range:
            return manager.history.export(
                manager.history.query(q=q, action=action, priority=priority, date_range=date_range)
            )
        return manager.history.export()

    @app.post("/api/v1/history/import")
    async def import_history(request: Request, replace: bool = True) -> dict[str, Any]:
        await require_admin_auth(request)
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="导入内容必须为 JSON")
        if not isinstance(payload, (dict, list)):
            raise HTTPException(status_code=400, detail="导入内容必须为导出格式或条目列表")
        imported = await manager.history.import_entries(payload, replace_existing=replace)
        return {"ok": True, "imported": imported, "total": len(manager.history)}

    # ----------------- 统计分析 ----------------
    @app.get("/api/v1/analytics/statistics")
    async def get_statistics(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        return manager.analytics.calculate_statistics()

    @app.get("/api/v1/analytics/trends")
    async def get_trends(request: Request, window_days: int = Query(default=30, ge=1, le=365)) -> dict[str, Any]:
        await require_admin_auth(request)
        return manager.analytics.calculate_trends(window_days)

    @app.get("/api/v1/analytics/overdue")
    async def get_overdue(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        return manager.analytics.analyze_overdue()

    @app.get("/api/v1/analytics/report/{period}")
    async def get_report(period: ReportPeriod, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        return manager.analytics.generate_report(period)

    # ----------------- 调试 ----------------
    @app.get("/api/v1/debug/captures")
    async def get_debug_captures(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        items = manager.debug_capture.snapshot()
        return {"enabled": manager.debug_capture.enabled, "items": items, "total": len(items)}

    @app.post("/api/v1/debug/capture")
    async def set_debug_capture(payload: DebugCaptureRequest, request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        await manager.set_debug_capture(payload.enabled)
        return {"ok": True, "enabled": payload.enabled}

    @app.get("/api/v1/logs")
    async def get_logs(
        request: Request,
        lines: int = 200,
        level: str | None = None,
        levels: str | None = None,
        q: str | None = None,
        stream: str = "main",
    ) -> dict[str, Any]:
        await require_admin_auth(request)
        lines = max(1, min(lines, 5000))

        target_path = error_log_path(LOG_FILE) if stream == "error" else Path(LOG_FILE)

        raw_lines = tail_lines(target_path, lines)
        level_list: list[str] = []
        if levels:
            level_list.extend([part.strip() for part in levels.split(",") if part.strip()])
        if level:
            level_list.append(level)

        filtered = filter_logs(raw_lines, levels=level_list, keyword=q)
        return {
            "stream": stream,
            "level": level,
            "levels": level_list,
            "q": q,
            "file": str(target_path),
            "lines": filtered,
        }

    # ----------------- 推送入口 ----------------
    @app.post("/api/v1/webhooks/todo-reminder")
    async def ingest_todo_reminder(request: Request) -> dict[str, Any]:
        await require_webhook_auth(request)

        body = await request.body()
        try:
            payload: Any = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            # 非 JSON 内容交给标准化流程按纯文本兜底
            payload = body.decode("utf-8", errors="replace")

        reminder = await manager.handle_payload(payload)
        if reminder is None:
            return {"ok": False, "message": "提醒正在等待完成确认，已忽略"}
        logger.info(f"收到待办提醒推送: reminder_id={reminder.id}")
        return {
            "ok": True,
            "reminder_id": reminder.id,
            "kind": reminder.kind.value,
            "priority": reminder.priority.value,
        }

    @app.post("/api/v1/admin/shutdown")
    async def admin_shutdown(payload: ShutdownRequest, request: Request) -> dict[str, Any]:
        auth_info = await require_admin_auth(request)
        logger.warning(f"收到远程关闭请求: by={auth_info['user']}, reason={payload.reason}")
        control.shutdown_event.set()
        return {"ok": True, "action": "shutdown", "reason": payload.reason}

    return app
