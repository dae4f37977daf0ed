"""管理 API 与推送入口的鉴权

- 管理接口: Authorization: Bearer <ADMIN_AUTH_TOKEN>，或 X-Todo-Token 头;
- 推送入口: 配置了 WEBHOOK_SHARED_SECRET 时只认 X-Todo-Webhook-Secret 头，否则与管理接口相同。

ADMIN_AUTH_TOKEN 为空时所有管理接口返回 503。
"""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from todo_reminder.config.settings import ADMIN_AUTH_TOKEN, WEBHOOK_SHARED_SECRET
from todo_reminder.logger import logger

TOKEN_HEADER = "X-Todo-Token"
WEBHOOK_SECRET_HEADER = "X-Todo-Webhook-Secret"

if not ADMIN_AUTH_TOKEN:
    logger.warning("未配置 ADMIN_AUTH_TOKEN，待办提醒管理 API 将不可访问")


def _matches(candidate: str | None, expected: str) -> bool:
    return bool(candidate) and hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def extract_token(request: Request) -> str | None:
    scheme, _, credential = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credential.strip():
        return credential.strip()
    return request.headers.get(TOKEN_HEADER, "").strip() or None


async def require_admin_auth(request: Request) -> dict[str, str]:
    if not ADMIN_AUTH_TOKEN:
        raise HTTPException(status_code=503, detail="ADMIN_AUTH_TOKEN 未配置")

    if _matches(extract_token(request), ADMIN_AUTH_TOKEN):
        return {"auth": "token", "user": "admin-token"}

    logger.debug(f"管理 API 鉴权失败: path={request.url.path}")
    raise HTTPException(status_code=401, detail="未授权")


async def require_webhook_auth(request: Request) -> dict[str, str]:
    """推送入口鉴权，未配置共享密钥时退回管理令牌"""
    if not WEBHOOK_SHARED_SECRET:
        return await require_admin_auth(request)

    if _matches(request.headers.get(WEBHOOK_SECRET_HEADER, "").strip(), WEBHOOK_SHARED_SECRET):
        return {"auth": "webhook-secret", "user": "backend"}

    logger.warning(f"待办提醒推送鉴权失败: client={request.client.host if request.client else '-'}")
    raise HTTPException(status_code=401, detail="Webhook 鉴权失败")
