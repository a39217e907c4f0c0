"""
令牌服务 - 校验访问令牌并提取主体身份

两种传输（HTTP 与 hub）使用同一个 TokenService 实例、同一份配置，
因此能被其中一种接受的令牌，另一种也一定接受。
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

import jwt

from core.config import JwtSettings, settings
from core.exceptions import (
    TokenBadSignatureException,
    TokenExpiredException,
    TokenMalformedException,
    TokenWrongAudienceException,
)
from core.logging_config import get_logger
from domain.chat import ChatUser, Identity


logger = get_logger(__name__)

REQUIRED_CLAIMS = ["sub", "exp", "iss", "aud"]


class TokenService:
    """
    令牌校验器

    verify() 是令牌和静态配置的纯函数：无副作用、不访问后端。
    失败时抛出 Malformed / Expired / BadSignature / WrongAudience 之一。
    """

    def __init__(self, config: Optional[JwtSettings] = None):
        self._config = config or settings.jwt
        if not self._config.secret_key:
            raise ValueError("JWT secret key is not configured")

    @property
    def config(self) -> JwtSettings:
        return self._config

    def verify(self, token: Optional[str]) -> Identity:
        """校验令牌签名、过期时间与 issuer/audience，返回主体身份"""
        if not token or not token.strip():
            raise TokenMalformedException("Missing token")

        cfg = self._config
        try:
            payload = jwt.decode(
                token.strip(),
                cfg.secret_key,
                algorithms=[cfg.algorithm],
                audience=cfg.audience,
                issuer=cfg.issuer,
                leeway=cfg.leeway_seconds,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except jwt.InvalidSignatureError:
            raise TokenBadSignatureException()
        except (jwt.InvalidAudienceError, jwt.InvalidIssuerError) as e:
            raise TokenWrongAudienceException(str(e))
        except jwt.InvalidTokenError as e:
            # DecodeError, MissingRequiredClaimError, InvalidAlgorithmError, ...
            logger.info("token_rejected", reason=type(e).__name__)
            raise TokenMalformedException(str(e) or "Malformed token")

        subject = payload.get("sub")
        try:
            user_id = int(subject)
        except (TypeError, ValueError):
            raise TokenMalformedException("Subject claim is not a user id")

        username = payload.get("unique_name") or payload.get("username")
        return Identity(user_id=user_id, username=username)

    def create_access_token(self, user: ChatUser) -> str:
        """为登录/注册成功的用户签发访问令牌（仅用于转发登录结果）"""
        cfg = self._config
        now = datetime.now(timezone.utc)
        to_encode = {
            "sub": str(user.id),
            "unique_name": user.username,
            "iss": cfg.issuer,
            "aud": cfg.audience,
            "iat": now,
            "exp": now + timedelta(minutes=cfg.access_token_expire_minutes),
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(to_encode, cfg.secret_key, algorithm=cfg.algorithm)


__all__ = ["TokenService"]
