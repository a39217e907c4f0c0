"""
API依赖项 - 认证和服务装配

服务实例在 lifespan 中创建一次并挂在 app.state 上，这里只负责取出。
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.security import DualTransportAuthenticator
from application.ports.chat_backend import ChatBackendPort
from application.services.auth_service import AuthApplicationService
from application.services.chat_service import ChatApplicationService
from application.services.fanout_service import FanoutService
from application.services.friend_service import FriendApplicationService
from application.services.group_chat_service import GroupChatApplicationService
from application.services.realtime_service import RealtimeService
from application.services.token_service import TokenService
from domain.chat import Identity

# HTTP Bearer for direct API calls (documents the scheme in OpenAPI)
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise RuntimeError(f"{name} not initialized. Ensure lifespan sets app.state.{name}.")
    return value


def get_backend(request: Request) -> ChatBackendPort:
    return _state(request, "chat_backend")


def get_token_service(request: Request) -> TokenService:
    return _state(request, "token_service")


def get_authenticator(request: Request) -> DualTransportAuthenticator:
    return _state(request, "authenticator")


def get_realtime_service(request: Request) -> RealtimeService:
    return _state(request, "realtime_service")


def get_fanout_service(request: Request) -> FanoutService:
    return _state(request, "fanout_service")


async def get_current_identity(
    request: Request,
    _credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    authenticator: DualTransportAuthenticator = Depends(get_authenticator),
) -> Identity:
    """获取当前登录身份（UnauthorizedException -> 401 + WWW-Authenticate）"""
    return authenticator.authenticate_request(request)


async def get_auth_service(
    backend: ChatBackendPort = Depends(get_backend),
    token_service: TokenService = Depends(get_token_service),
) -> AuthApplicationService:
    return AuthApplicationService(backend, token_service)


async def get_chat_service(backend: ChatBackendPort = Depends(get_backend)) -> ChatApplicationService:
    return ChatApplicationService(backend)


async def get_friend_service(backend: ChatBackendPort = Depends(get_backend)) -> FriendApplicationService:
    return FriendApplicationService(backend)


async def get_group_chat_service(backend: ChatBackendPort = Depends(get_backend)) -> GroupChatApplicationService:
    return GroupChatApplicationService(backend)
