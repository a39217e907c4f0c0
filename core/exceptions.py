"""
自定义异常映射与全局异常处理器
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import traceback
import uuid
from starlette import status as http_status

from .response import error_response, exception_response
from shared.codes import BusinessCode
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException


class UnauthorizedException(BusinessException):
    """未授权异常（Unauthenticated）"""

    def __init__(self, message: str = "Unauthorized", *, code: int = BusinessCode.UNAUTHORIZED,
                 error_type: str = "Unauthorized", message_key: str = "auth.unauthorized"):
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            message_key=message_key,
        )


class TokenMalformedException(UnauthorizedException):
    """Token 结构或声明不合法"""

    def __init__(self, message: str = "Malformed token"):
        super().__init__(message, code=BusinessCode.TOKEN_INVALID,
                         error_type="TokenMalformed", message_key="auth.token.malformed")


class TokenExpiredException(UnauthorizedException):
    """Token过期异常"""

    def __init__(self):
        super().__init__("Token expired", code=BusinessCode.TOKEN_EXPIRED,
                         error_type="TokenExpired", message_key="auth.token.expired")


class TokenBadSignatureException(UnauthorizedException):
    """Token签名校验失败"""

    def __init__(self):
        super().__init__("Token signature verification failed", code=BusinessCode.TOKEN_BAD_SIGNATURE,
                         error_type="TokenBadSignature", message_key="auth.token.bad_signature")


class TokenWrongAudienceException(UnauthorizedException):
    """Token 的 issuer/audience 与配置不符"""

    def __init__(self, message: str = "Token audience or issuer mismatch"):
        super().__init__(message, code=BusinessCode.TOKEN_WRONG_AUDIENCE,
                         error_type="TokenWrongAudience", message_key="auth.token.wrong_audience")


def business_code_to_http_status(code: int) -> int:
    """根据业务码映射HTTP状态码（默认400）。"""
    mapping = {
        BusinessCode.PARAM_ERROR: http_status.HTTP_400_BAD_REQUEST,
        BusinessCode.PARAM_MISSING: http_status.HTTP_400_BAD_REQUEST,
        BusinessCode.PARAM_TYPE_ERROR: http_status.HTTP_400_BAD_REQUEST,
        BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,

        BusinessCode.BUSINESS_ERROR: http_status.HTTP_400_BAD_REQUEST,
        BusinessCode.USER_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
        BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
        BusinessCode.ALREADY_EXISTS: http_status.HTTP_409_CONFLICT,
        BusinessCode.PASSWORD_ERROR: http_status.HTTP_401_UNAUTHORIZED,
        BusinessCode.TOKEN_INVALID: http_status.HTTP_401_UNAUTHORIZED,
        BusinessCode.TOKEN_EXPIRED: http_status.HTTP_401_UNAUTHORIZED,
        BusinessCode.TOKEN_BAD_SIGNATURE: http_status.HTTP_401_UNAUTHORIZED,
        BusinessCode.TOKEN_WRONG_AUDIENCE: http_status.HTTP_401_UNAUTHORIZED,

        BusinessCode.PERMISSION_ERROR: http_status.HTTP_403_FORBIDDEN,
        BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
        BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,

        BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        BusinessCode.NETWORK_ERROR: http_status.HTTP_503_SERVICE_UNAVAILABLE,
        BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    }
    try:
        return mapping.get(BusinessCode(code), http_status.HTTP_400_BAD_REQUEST)
    except ValueError:
        return http_status.HTTP_400_BAD_REQUEST


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    Args:
        app: FastAPI应用实例
    """

    logger = get_logger(__name__)

    def _request_id(request: Request) -> str:
        return getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        """处理业务异常（含后端 RPC 映射后的异常）"""
        response = exception_response(exc, _request_id(request))
        status_code = business_code_to_http_status(exc.code)
        # 401 时返回 WWW-Authenticate
        headers = {"WWW-Authenticate": "Bearer"} if status_code == http_status.HTTP_401_UNAUTHORIZED else None
        return JSONResponse(status_code=status_code, content=response.model_dump(mode='json'), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理参数验证异常"""
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", [])[1:])

        response = error_response(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=f"Validation failed: {first_error.get('msg', 'unknown')}",
            error_type="ValidationError",
            details={"errors": [{k: v for k, v in e.items() if k != "ctx"} for e in errors]},
            field=field,
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=response.model_dump(mode='json')
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """处理HTTP异常"""
        code_mapping = {
            401: BusinessCode.UNAUTHORIZED,
            403: BusinessCode.FORBIDDEN,
            404: BusinessCode.NOT_FOUND,
            500: BusinessCode.SYSTEM_ERROR,
            503: BusinessCode.SERVICE_UNAVAILABLE
        }
        code = code_mapping.get(exc.status_code, BusinessCode.SYSTEM_ERROR)

        response = error_response(
            code=code,
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=response.model_dump(mode='json'),
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """处理所有未捕获的异常"""
        request_id = _request_id(request)

        # 在开发环境可以返回详细错误信息
        details = None
        if app.debug:
            details = {
                "exception": str(exc),
                "traceback": traceback.format_exc()
            }

        response = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message="Internal server error",
            error_type="SystemError",
            details=details,
            request_id=request_id,
        )

        logger.error(
            "unhandled_exception",
            request_id=request_id,
            error=str(exc),
            exc_info=True,
        )

        return JSONResponse(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode='json')
        )
