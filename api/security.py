"""
双传输认证器 - 从 HTTP 请求或 hub 握手中提取令牌

- 常规 HTTP 调用：只读取 `Authorization: Bearer <token>`
- hub 握手：优先 Bearer 头；没有时读取查询参数 `access_token`，
  且仅限 hub 路径。其他路径上出现查询参数令牌一律拒绝。
"""
from typing import Mapping, Optional

from fastapi import Request, WebSocket

from application.services.token_service import TokenService
from core.config import settings
from core.exceptions import UnauthorizedException
from core.logging_config import get_logger
from domain.chat import Identity


logger = get_logger(__name__)

BEARER_PREFIX = "bearer "


def _normalize_path(path: str) -> str:
    return path.rstrip("/") or "/"


def bearer_from_headers(headers: Mapping[str, str]) -> Optional[str]:
    auth = headers.get("authorization") or ""
    if auth[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX:
        token = auth[len(BEARER_PREFIX):].strip()
        return token or None
    return None


class DualTransportAuthenticator:
    """把两种传输形态的令牌来源统一到同一个 TokenService"""

    def __init__(
        self,
        token_service: TokenService,
        *,
        hub_path: Optional[str] = None,
        query_param: Optional[str] = None,
    ):
        self.token_service = token_service
        self.hub_path = _normalize_path(hub_path or settings.realtime.hub_path)
        self.query_param = query_param or settings.realtime.token_query_param

    def is_hub_path(self, path: str) -> bool:
        return _normalize_path(path) == self.hub_path

    def extract_token(
        self,
        path: str,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
    ) -> str:
        """按来源策略取出原始令牌，取不到时抛出 UnauthorizedException"""
        token = bearer_from_headers(headers)
        if token:
            return token

        query_token = query_params.get(self.query_param)
        if query_token:
            if not self.is_hub_path(path):
                logger.warning("query_token_rejected", path=path)
                raise UnauthorizedException("Query-string tokens are only accepted on the hub endpoint")
            return query_token

        raise UnauthorizedException("Missing bearer token")

    def authenticate(
        self,
        path: str,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
    ) -> Identity:
        return self.token_service.verify(self.extract_token(path, headers, query_params))

    def authenticate_request(self, request: Request) -> Identity:
        return self.authenticate(request.url.path, request.headers, request.query_params)

    def authenticate_websocket(self, ws: WebSocket) -> Identity:
        return self.authenticate(ws.url.path, ws.headers, ws.query_params)


__all__ = ["DualTransportAuthenticator", "bearer_from_headers"]
