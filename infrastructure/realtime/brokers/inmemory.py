"""In-memory implementation of RealtimeBrokerPort.

Single-process only. Handlers run before publish() returns, so a broadcast
is already enqueued for every local subscriber when the caller resumes.
"""
from __future__ import annotations

from typing import List
import asyncio

from application.ports.realtime import Envelope, RealtimeBrokerPort, Handler
from core.logging_config import get_logger


logger = get_logger(__name__)


class InMemoryRealtimeBroker(RealtimeBrokerPort):
    def __init__(self) -> None:
        self._handlers: List[Handler] = []
        self._lock = asyncio.Lock()

    async def publish(self, room: str, envelope: Envelope) -> None:  # type: ignore[override]
        async with self._lock:
            handlers = list(self._handlers)
        for h in handlers:
            try:
                await h(envelope)
            except Exception as exc:
                logger.error("broker_handler_failed", room=room, type=envelope.type, error=str(exc), exc_info=True)

    async def subscribe(self, handler: Handler) -> None:  # type: ignore[override]
        async with self._lock:
            self._handlers.append(handler)

    async def aclose(self) -> None:  # type: ignore[override]
        async with self._lock:
            self._handlers.clear()
