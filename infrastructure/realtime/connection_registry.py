"""In-process registry of live hub connections.

Each connection is tagged with its authenticated identity for its whole
lifetime and owns a bounded send queue drained by a dedicated sender task,
so a slow or dead socket never blocks deliveries to other connections.
Cross-process broadcast is handled by a RealtimeBrokerPort implementation.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from core.config import settings
from core.logging_config import get_logger
from domain.chat import Identity
from .group_membership import GroupMembershipTable


logger = get_logger(__name__)

OVERFLOW_POLICIES = {"drop_oldest", "drop_new", "disconnect"}


class OutboundSocket(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class Connection:
    id: str
    identity: Identity
    socket: OutboundSocket
    queue: asyncio.Queue
    state: ConnectionState = ConnectionState.CONNECTING
    sender_task: Optional[asyncio.Task] = field(default=None, repr=False)


def new_connection_id() -> str:
    return uuid.uuid4().hex


class ConnectionRegistry:
    """Manage per-process hub connections.

    unregister() is idempotent and transitively removes the connection from
    every group, so no group ever references a closed connection.
    """

    def __init__(
        self,
        groups: GroupMembershipTable,
        *,
        send_queue_max: Optional[int] = None,
        overflow_policy: Optional[str] = None,
    ) -> None:
        self._groups = groups
        self._connections: Dict[str, Connection] = {}
        self._lock = asyncio.Lock()
        cfg = settings.realtime
        self._queue_max = max(1, int(send_queue_max or cfg.send_queue_max))
        policy = (overflow_policy or cfg.send_overflow_policy or "drop_oldest").lower()
        if policy not in OVERFLOW_POLICIES:
            logger.warning("ws_send_queue_policy_invalid", policy=policy, fallback="drop_oldest")
            policy = "drop_oldest"
        self._policy = policy

    @property
    def groups(self) -> GroupMembershipTable:
        return self._groups

    async def register(self, connection_id: str, identity: Identity, socket: OutboundSocket) -> Connection:
        async with self._lock:
            existing = self._connections.get(connection_id)
            if existing is not None:
                return existing
            conn = Connection(
                id=connection_id,
                identity=identity,
                socket=socket,
                queue=asyncio.Queue(maxsize=self._queue_max),
            )
            conn.sender_task = asyncio.create_task(self._sender_loop(conn), name=f"ws-sender-{connection_id}")
            conn.state = ConnectionState.OPEN
            self._connections[connection_id] = conn
        logger.info("ws_connected", connection_id=connection_id, user_id=identity.user_id)
        return conn

    async def unregister(self, connection_id: str) -> bool:
        """Remove a connection; unknown or already-removed ids are a no-op."""
        async with self._lock:
            conn = self._connections.pop(connection_id, None)
            if conn is None:
                return False
            conn.state = ConnectionState.CLOSED
            if conn.sender_task is not None:
                conn.sender_task.cancel()
            self._discard_pending(conn.queue)
        rooms = await self._groups.remove_everywhere(connection_id)
        logger.info(
            "ws_disconnected",
            connection_id=connection_id,
            user_id=conn.identity.user_id,
            rooms_left=len(rooms),
        )
        return True

    def is_alive(self, connection_id: str) -> bool:
        conn = self._connections.get(connection_id)
        return conn is not None and conn.state is ConnectionState.OPEN

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def identity_of(self, connection_id: str) -> Optional[Identity]:
        conn = self._connections.get(connection_id)
        return conn.identity if conn is not None else None

    def __len__(self) -> int:
        return len(self._connections)

    async def deliver(self, connection_id: str, payload: dict, **context: Any) -> bool:
        """Enqueue a frame for one connection. Delivery to a dead id is a no-op."""
        conn = self._connections.get(connection_id)
        if conn is None or conn.state is not ConnectionState.OPEN:
            return False
        q = conn.queue
        try:
            q.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            pass

        if self._policy == "drop_new":
            logger.warning("ws_send_queue_drop_new", connection_id=connection_id, **context)
            return False
        if self._policy == "disconnect":
            logger.warning("ws_send_queue_disconnect", connection_id=connection_id, **context)
            try:
                await conn.socket.close(code=1013)
            except Exception as exc:
                logger.warning("ws_close_failed", connection_id=connection_id, error=str(exc))
            return False
        # drop_oldest
        try:
            q.get_nowait()
            q.task_done()
        except asyncio.QueueEmpty:
            pass
        try:
            q.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning("ws_send_queue_drop_after_trim", connection_id=connection_id, **context)
            return False

    async def drain(self) -> None:
        """Wait until every live connection has flushed its send queue."""
        for conn in list(self._connections.values()):
            if conn.state is ConnectionState.OPEN:
                await conn.queue.join()

    async def close_all(self) -> None:
        for connection_id in list(self._connections.keys()):
            await self.unregister(connection_id)

    @staticmethod
    def _discard_pending(q: asyncio.Queue) -> None:
        while True:
            try:
                q.get_nowait()
            except asyncio.QueueEmpty:
                return
            q.task_done()

    async def _sender_loop(self, conn: Connection) -> None:
        q = conn.queue
        try:
            while True:
                payload = await q.get()
                try:
                    await conn.socket.send_json(payload)
                except Exception as exc:
                    # Isolated per recipient; the session loop notices the dead socket
                    logger.warning("ws_send_failed", connection_id=conn.id, error=str(exc))
                finally:
                    q.task_done()
        except asyncio.CancelledError:
            return
