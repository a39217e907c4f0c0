"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import LoggingMiddleware, RequestIDMiddleware
from api.routes import auth, chat, friends, group_chat, health, hub
from api.security import DualTransportAuthenticator
from application.ports.chat_backend import ChatBackendPort
from application.ports.realtime import RealtimeBrokerPort
from application.services.fanout_service import FanoutService
from application.services.realtime_service import RealtimeService
from application.services.token_service import TokenService
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.external.chat_backend import GrpcChatBackendClient
from infrastructure.realtime.brokers import InMemoryRealtimeBroker, RedisRealtimeBroker
from infrastructure.realtime.connection_registry import ConnectionRegistry
from infrastructure.realtime.group_membership import GroupMembershipTable


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


def select_broker() -> RealtimeBrokerPort:
    """根据 REALTIME__BROKER 选择广播通道：auto -> redis(if url) else inmemory"""
    provider = (settings.realtime.broker or "auto").lower()
    if provider in ("redis", "auto") and settings.redis.url:
        logger.info("realtime_broker_selected", provider="redis")
        return RedisRealtimeBroker()
    if provider == "redis":
        logger.warning("realtime_broker_redis_missing_url", message="REDIS__URL not set, falling back to in-memory broker")
    logger.info("realtime_broker_selected", provider="inmemory")
    return InMemoryRealtimeBroker()


def create_app(
    *,
    backend: Optional[ChatBackendPort] = None,
    broker: Optional[RealtimeBrokerPort] = None,
) -> FastAPI:
    """组装应用；测试可注入假的后端与广播通道"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        chat_backend = backend or GrpcChatBackendClient()
        token_service = TokenService()
        realtime_broker = broker or select_broker()

        # 连接注册表与分组表：每个进程一份，显式注入
        groups = GroupMembershipTable()
        registry = ConnectionRegistry(groups)
        realtime = RealtimeService(broker=realtime_broker, registry=registry, groups=groups)
        await realtime_broker.subscribe(realtime.on_broker_event)

        app.state.chat_backend = chat_backend
        app.state.token_service = token_service
        app.state.authenticator = DualTransportAuthenticator(token_service)
        app.state.realtime_broker = realtime_broker
        app.state.realtime_service = realtime
        app.state.fanout_service = FanoutService(chat_backend, realtime)
        logger.info(
            "application_started",
            backend_target=settings.backend.target,
            hub_path=settings.realtime.hub_path,
        )

        yield

        await realtime.aclose()
        await realtime_broker.aclose()
        if backend is None:
            await chat_backend.close()
        logger.info("application_shutdown", message="Application shutdown")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        description="实时聊天网关：HTTP 接口 + WebSocket 推送 hub，后端为 gRPC 聊天服务",
    )

    # 添加中间件（注意顺序：从下往上执行）
    # 1. Request ID中间件（最先执行，为后续中间件提供request_id）
    app.add_middleware(RequestIDMiddleware)
    # 2. 日志中间件（依赖request_id）
    app.add_middleware(LoggingMiddleware)
    # 3. CORS中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(auth.router, prefix="/api")
    app.include_router(chat.router, prefix="/api")
    app.include_router(friends.router, prefix="/api")
    app.include_router(group_chat.router, prefix="/api")
    app.include_router(health.router)
    app.include_router(hub.router)

    @app.get("/", tags=["Root"])
    async def root():
        """API根路径"""
        return success_response(
            data={
                "name": settings.PROJECT_NAME,
                "version": settings.VERSION,
                "docs": "/docs",
                "hub": settings.realtime.hub_path,
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
