"""
认证API路由 - 注册/登录转发到后端，返回访问令牌
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_auth_service, get_current_identity
from application.dto import AuthResponse, LoginRequest, RegisterRequest, UserDTO
from application.services.auth_service import AuthApplicationService
from core.response import Response as ApiResponse, success_response
from domain.chat import Identity

router = APIRouter(prefix="/auth", tags=["认证"])


@router.post("/register", summary="用户注册", response_model=ApiResponse[AuthResponse])
async def register(
    body: RegisterRequest,
    service: AuthApplicationService = Depends(get_auth_service),
):
    """注册新用户；用户名已存在时返回 409"""
    return success_response(data=await service.register(body.username, body.password))


@router.post("/login", summary="用户登录", response_model=ApiResponse[AuthResponse])
async def login(
    body: LoginRequest,
    service: AuthApplicationService = Depends(get_auth_service),
):
    """
    用户登录获取访问令牌

    同一个令牌既可用于 HTTP 接口（Authorization 头），
    也可用于 hub 握手（Authorization 头或 access_token 查询参数）。
    """
    return success_response(data=await service.login(body.username, body.password))


@router.get("/me", summary="获取当前用户信息", response_model=ApiResponse[UserDTO])
async def me(
    identity: Identity = Depends(get_current_identity),
    service: AuthApplicationService = Depends(get_auth_service),
):
    return success_response(data=await service.current_user(identity))
