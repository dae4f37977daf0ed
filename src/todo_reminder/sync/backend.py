"""后端同步

每次用户操作只向后端发送一次更新请求，不做自动重试:
- complete: {todoId, action: "complete", completedAt, priority, title, content}
- snooze:   {todoId, action: "snooze", newTime, priority, title, content}

凭证优先读取持久化存储中的 auth.access_token，缺失时回退到配置中的 BACKEND_AUTH_TOKEN。
请求阶段的任何错误、非 2xx 响应以及缺少凭证都抛出 BackendSyncFailure。
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from todo_reminder.datamodel import Reminder
from todo_reminder.errors import BackendSyncFailure, PersistenceFailure
from todo_reminder.logger import logger
from todo_reminder.metrics import RuntimeMetrics, runtime_metrics
from todo_reminder.storage.kv import ACCESS_TOKEN_KEY, KVStore
from todo_reminder.utils import to_iso

__all__ = ["BackendSync", "TokenProvider", "kv_token_provider"]

TokenProvider = Callable[[], Awaitable[Optional[str]]]


def kv_token_provider(kv: Optional[KVStore], fallback: str = "") -> TokenProvider:
    async def provide() -> Optional[str]:
        if kv is not None:
            try:
                stored = await kv.get_json(ACCESS_TOKEN_KEY)
            except PersistenceFailure as e:
                logger.warning(f"读取访问凭证失败，使用配置中的凭证: {e}")
                stored = None
            if isinstance(stored, dict):
                stored = stored.get("token") or stored.get("accessToken")
            if isinstance(stored, str) and stored.strip():
                return stored.strip()
        return fallback or None

    return provide


class BackendSync:
    def __init__(
        self,
        base_url: str,
        path: str = "/api/todo/update",
        timeout: float = 10.0,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[RuntimeMetrics] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.path = path if path.startswith("/") else f"/{path}"
        self.timeout = timeout
        self._token_provider = token_provider or kv_token_provider(None)
        self._transport = transport
        self.metrics = metrics or runtime_metrics

    async def confirm_complete(self, reminder: Reminder, completed_at: datetime) -> Dict[str, Any]:
        payload = self._build_payload(reminder, "complete")
        payload["completedAt"] = to_iso(completed_at)
        return await self._post(payload)

    async def notify_snooze(self, reminder: Reminder, new_time: datetime) -> Dict[str, Any]:
        payload = self._build_payload(reminder, "snooze")
        payload["newTime"] = to_iso(new_time)
        return await self._post(payload)

    @staticmethod
    def _build_payload(reminder: Reminder, action: str) -> Dict[str, Any]:
        return {
            "todoId": reminder.id,
            "action": action,
            "priority": reminder.priority.value,
            "title": reminder.title,
            "content": reminder.content,
        }

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        token = await self._token_provider()
        if not token:
            logger.warning(f"缺少访问凭证，无法同步待办: todo_id={payload['todoId']}")
            raise BackendSyncFailure("缺少访问凭证")

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(self.path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            self.metrics.record_backend_call((time.perf_counter() - started) * 1000, error=True)
            logger.warning(f"后端请求失败: action={payload['action']}, todo_id={payload['todoId']}, error={e}")
            raise BackendSyncFailure(f"后端请求失败: {e}") from e
        except Exception as e:
            # 非法地址、凭证含非 ASCII 字符等在发出请求前就失败的情况
            self.metrics.record_backend_call((time.perf_counter() - started) * 1000, error=True)
            logger.opt(exception=e).error(
                f"后端请求无法发出: action={payload['action']}, todo_id={payload['todoId']}"
            )
            raise BackendSyncFailure(f"后端请求无法发出: {e!r}") from e

        latency_ms = (time.perf_counter() - started) * 1000
        if not response.is_success:
            self.metrics.record_backend_call(latency_ms, error=True)
            logger.warning(
                f"后端返回非成功状态: action={payload['action']}, todo_id={payload['todoId']}, "
                f"status={response.status_code}, response={response.text[:200]}"
            )
            raise BackendSyncFailure(f"后端返回状态码 {response.status_code}", status_code=response.status_code)

        self.metrics.record_backend_call(latency_ms)
        logger.info(f"后端同步成功: action={payload['action']}, todo_id={payload['todoId']}, latency_ms={latency_ms:.1f}")
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {"data": body}
