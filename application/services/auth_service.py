"""
认证应用服务 - 注册/登录转发给后端，并签发访问令牌
"""
from application.dto import AuthResponse, UserDTO
from application.ports.chat_backend import ChatBackendPort
from application.services.token_service import TokenService
from core.exceptions import UnauthorizedException
from core.logging_config import get_logger
from domain.chat import ChatUser, Identity
from domain.common.exceptions import PasswordErrorException


logger = get_logger(__name__)


class AuthApplicationService:
    """认证应用服务"""

    def __init__(self, backend: ChatBackendPort, token_service: TokenService):
        self._backend = backend
        self._token_service = token_service

    def _issue(self, user: ChatUser) -> AuthResponse:
        return AuthResponse(
            access_token=self._token_service.create_access_token(user),
            user=UserDTO.from_domain(user),
        )

    async def register(self, username: str, password: str) -> AuthResponse:
        user = await self._backend.register_user(username, password)
        logger.info("user_registered", user_id=user.id)
        return self._issue(user)

    async def login(self, username: str, password: str) -> AuthResponse:
        try:
            user = await self._backend.login(username, password)
        except UnauthorizedException:
            # 后端以 UNAUTHENTICATED 表示用户名或密码错误
            raise PasswordErrorException()
        logger.info("user_logged_in", user_id=user.id)
        return self._issue(user)

    async def current_user(self, identity: Identity) -> UserDTO:
        user = await self._backend.get_user(identity.user_id)
        return UserDTO.from_domain(user)
