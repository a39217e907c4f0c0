"""
Realtime port and hub frame DTOs (contracts-first).

This module defines the push-hub frame and the RealtimeBrokerPort
protocol so the application layer can remain decoupled from the
concrete broadcast implementations (infrastructure).
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol
from pydantic import BaseModel, Field
from datetime import datetime, timezone


def _utc_now_z() -> str:
    ts = datetime.now(timezone.utc)
    s = ts.isoformat()
    return s.replace("+00:00", "Z")


class Envelope(BaseModel):
    """Unified hub frame passed around the system.

    Fields:
      - type: command or event name (JoinChat/LeaveChat/SendMessage,
        ReceiveMessage/MessageEdited/MessageDeleted, ack/error/ping/pong/welcome)
      - room: optional room id (group key)
      - data: payload (JSON-serializable)
      - id: optional invocation id echoed back in ack/error frames
      - ts: server-generated UTC timestamp (ISO8601 with Z)
    """

    type: str
    room: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None
    ts: str = Field(default_factory=_utc_now_z)


Handler = Callable[[Envelope], Awaitable[None]]


class RealtimeBrokerPort(Protocol):
    """Abstraction for cross-process broadcast.

    Implementations may be in-memory (single process) or Redis pub/sub.
    The application only depends on this contract.
    """

    async def publish(self, room: str, envelope: Envelope) -> None: ...

    async def subscribe(self, handler: Handler) -> None: ...

    async def aclose(self) -> None: ...  # pragma: no cover - optional


__all__ = ["Envelope", "RealtimeBrokerPort", "Handler"]
