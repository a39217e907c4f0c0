"""
Request ID 中间件
用于生成或透传追踪ID，并通过contextvars传递给日志系统和后端 gRPC 元数据
"""
import uuid
from contextvars import ContextVar
from typing import Any, Mapping, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

import structlog


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)

HEADER_NAME = "X-Request-ID"


def client_ip_from(headers: Mapping[str, str], fallback: Optional[str]) -> str:
    """X-Forwarded-For 第一个地址 > X-Real-IP > 直连地址"""
    x_forwarded_for = headers.get("X-Forwarded-For")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()
    return headers.get("X-Real-IP") or fallback or "unknown"


def bind_request_context(request_id: Optional[str], client_ip: str, **extra: Any) -> str:
    """设置 contextvars 并绑定到 structlog 上下文，HTTP 请求与 hub 会话共用"""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    client_ip_var.set(client_ip)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, client_ip=client_ip, **extra)
    return request_id


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件（仅 HTTP；hub 会话在握手时自行绑定）

    1. 从请求头获取或生成新的request_id
    2. 存入contextvars，供日志系统与后端调用拦截器使用
    3. 在响应头中返回request_id
    """

    async def dispatch(self, request: Request, call_next):
        client_ip = client_ip_from(request.headers, request.client.host if request.client else None)
        request_id = bind_request_context(
            request.headers.get(HEADER_NAME),
            client_ip,
            method=request.method,
            path=request.url.path,
        )
        request.state.request_id = request_id
        request.state.client_ip = client_ip

        response = await call_next(request)
        response.headers[HEADER_NAME] = request_id
        return response


def get_request_id() -> Optional[str]:
    """当前请求的request_id，不在请求上下文中时为None"""
    return request_id_var.get()


def get_client_ip() -> Optional[str]:
    return client_ip_var.get()
