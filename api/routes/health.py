"""
健康检查路由
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import get_backend
from application.ports.chat_backend import ChatBackendPort
from core.config import settings
from core.response import error_response, success_response
from shared.codes import BusinessCode

router = APIRouter(tags=["健康检查"])


@router.get("/health", summary="进程健康检查")
async def health():
    return {"status": "healthy", "version": settings.VERSION}


@router.get("/api/health/grpc", summary="后端连通性检查")
async def backend_health(backend: ChatBackendPort = Depends(get_backend)):
    if await backend.check_health():
        return success_response(data={"backend": "reachable", "target": settings.backend.target})
    response = error_response(
        code=BusinessCode.SERVICE_UNAVAILABLE,
        message="Chat backend unreachable",
        error_type="BackendUnavailable",
        details={"target": settings.backend.target},
    )
    return JSONResponse(status_code=503, content=response.model_dump(mode="json"))
