"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
后端 RPC 的失败状态在基础设施层统一映射为以下异常。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        super().__init__(self.message)


class ResourceNotFoundException(BusinessException):
    def __init__(self, message: str = "Resource not found", *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=message,
            error_type="NotFound",
            details=details,
            message_key="resource.not_found",
        )


class PermissionDeniedException(BusinessException):
    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=message,
            error_type="PermissionDenied",
            message_key="auth.forbidden",
        )


class ResourceAlreadyExistsException(BusinessException):
    def __init__(self, message: str = "Resource already exists", *, field: Optional[str] = None):
        super().__init__(
            code=BusinessCode.ALREADY_EXISTS,
            message=message,
            error_type="AlreadyExists",
            field=field,
            message_key="resource.exists",
        )


class InvalidArgumentException(BusinessException):
    def __init__(self, message: str = "Invalid argument", *, field: Optional[str] = None):
        super().__init__(
            code=BusinessCode.PARAM_ERROR,
            message=message,
            error_type="InvalidArgument",
            field=field,
            message_key="validation.invalid_argument",
        )


class PasswordErrorException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.PASSWORD_ERROR,
            message="Invalid username or password",
            error_type="PasswordError",
            message_key="auth.password.invalid",
        )


class BackendUnavailableException(BusinessException):
    """The system of record could not be reached (distinct from business failures)."""

    def __init__(self, message: str = "Chat backend unreachable"):
        super().__init__(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message=message,
            error_type="BackendUnavailable",
            message_key="backend.unavailable",
        )


class BackendInternalException(BusinessException):
    def __init__(self, message: str = "Chat backend internal error"):
        super().__init__(
            code=BusinessCode.SYSTEM_ERROR,
            message=message,
            error_type="BackendInternal",
            message_key="backend.internal",
        )
