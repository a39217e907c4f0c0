"""Client-side interceptors for calls to the chat backend.

- RequestIdClientInterceptor: propagates the current request id (bound into
  structlog contextvars by the HTTP middleware / hub session) as metadata.
- LoggingClientInterceptor: logs each unary call with status and elapsed time.
"""
from __future__ import annotations

import time
import uuid
from typing import Any, Callable

import grpc
import structlog

from core.logging_config import get_logger


logger = get_logger(__name__)

REQUEST_ID_META_KEY = "x-request-id"


def _current_request_id() -> str:
    return structlog.contextvars.get_contextvars().get("request_id") or str(uuid.uuid4())


def _with_metadata(details: grpc.aio.ClientCallDetails, key: str, value: str) -> grpc.aio.ClientCallDetails:
    metadata = grpc.aio.Metadata(*tuple(details.metadata or ()))
    if key not in metadata:
        metadata.add(key, value)
    return grpc.aio.ClientCallDetails(
        method=details.method,
        timeout=details.timeout,
        metadata=metadata,
        credentials=details.credentials,
        wait_for_ready=details.wait_for_ready,
    )


def _method_name(details: grpc.aio.ClientCallDetails) -> str:
    method = details.method
    return method.decode() if isinstance(method, bytes) else str(method)


class RequestIdClientInterceptor(grpc.aio.UnaryUnaryClientInterceptor):
    async def intercept_unary_unary(
        self,
        continuation: Callable[[grpc.aio.ClientCallDetails, Any], Any],
        client_call_details: grpc.aio.ClientCallDetails,
        request: Any,
    ) -> Any:
        details = _with_metadata(client_call_details, REQUEST_ID_META_KEY, _current_request_id())
        return await continuation(details, request)


class LoggingClientInterceptor(grpc.aio.UnaryUnaryClientInterceptor):
    async def intercept_unary_unary(
        self,
        continuation: Callable[[grpc.aio.ClientCallDetails, Any], Any],
        client_call_details: grpc.aio.ClientCallDetails,
        request: Any,
    ) -> Any:
        method = _method_name(client_call_details)
        start = time.perf_counter()
        call = await continuation(client_call_details, request)
        try:
            response = await call
        except grpc.aio.AioRpcError as exc:
            # Mapped to a business exception by the backend client
            logger.warning(
                "backend_rpc_failed",
                method=method,
                status=exc.code().name,
                details=exc.details(),
                elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise
        logger.info(
            "backend_rpc_done",
            method=method,
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response


__all__ = [
    "REQUEST_ID_META_KEY",
    "RequestIdClientInterceptor",
    "LoggingClientInterceptor",
]
