"""
API依赖项 - 调用方身份与应用服务
"""
from fastapi import Depends, Header, HTTPException, Request, status

from application.services.payment_service import PaymentService
from application.services.webhook_service import WebhookService


ADMIN_ROLES = frozenset({"admin"})


async def get_current_user_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    """当前用户ID：认证在网关层完成，这里只读取透传的请求头"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()


async def get_current_admin_id(
    user_id: str = Depends(get_current_user_id),
    x_user_role: str | None = Header(default=None, alias="X-User-Role"),
) -> str:
    """当前管理员：人工确认、退款、模拟支付只对后台开放"""
    if (x_user_role or "").strip().lower() not in ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return user_id


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_services.payments


def get_webhook_service(request: Request) -> WebhookService:
    return request.app.state.payment_services.webhooks
