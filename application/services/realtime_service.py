"""Application service for realtime hub workflows.

Keeps orchestration (connect, join, broadcast) separate from the concrete
connection registry, group table and cross-process broker.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from application.ports.realtime import Envelope, RealtimeBrokerPort
from core.logging_config import get_logger
from domain.chat import Identity
from infrastructure.realtime.connection_registry import (
    ConnectionRegistry,
    OutboundSocket,
    new_connection_id,
)
from infrastructure.realtime.group_membership import GroupMembershipTable


logger = get_logger(__name__)


class RealtimeService:
    def __init__(
        self,
        *,
        broker: RealtimeBrokerPort,
        registry: ConnectionRegistry,
        groups: Optional[GroupMembershipTable] = None,
    ) -> None:
        self._broker = broker
        self._registry = registry
        self._groups = groups or registry.groups

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def groups(self) -> GroupMembershipTable:
        return self._groups

    # Connection lifecycle management
    async def connect(self, identity: Identity, socket: OutboundSocket) -> str:
        """Register an authenticated connection and greet it. Returns the connection id."""
        connection_id = new_connection_id()
        await self._registry.register(connection_id, identity, socket)
        await self.send_to(
            connection_id,
            Envelope(
                type="welcome",
                data={
                    "connectionId": connection_id,
                    "userId": identity.user_id,
                    "serverTime": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                },
            ),
        )
        logger.info("user_connected", connection_id=connection_id, user_id=identity.user_id)
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        # unregister also removes the connection from every group
        await self._registry.unregister(connection_id)

    # Group subscription
    async def join_room(self, connection_id: str, room: str) -> bool:
        if not self._registry.is_alive(connection_id):
            return False
        await self._groups.join(room, connection_id)
        # A close that raced the join must not leave a dangling member
        if not self._registry.is_alive(connection_id):
            await self._groups.leave(room, connection_id)
            return False
        return True

    async def leave_room(self, connection_id: str, room: str) -> bool:
        return await self._groups.leave(room, connection_id)

    # Outbound
    async def send_to(self, connection_id: str, envelope: Envelope) -> bool:
        return await self._registry.deliver(connection_id, envelope.model_dump(mode="json"))

    async def publish(self, room: str, envelope: Envelope) -> None:
        """Hand a room event to the broker; local delivery happens in on_broker_event."""
        await self._broker.publish(room, envelope)

    async def broadcast(self, room: str, envelope: Envelope) -> int:
        """Deliver one event to a snapshot of the room's members. Returns the number enqueued."""
        members = await self._groups.members_of(room)
        if not members:
            return 0
        payload = envelope.model_dump(mode="json")
        delivered = 0
        for connection_id in members:
            if await self._registry.deliver(connection_id, payload, room=room):
                delivered += 1
        return delivered

    # Broker callback (cross-process events -> in-process broadcast)
    async def on_broker_event(self, envelope: Envelope) -> None:
        if not envelope.room:
            logger.warning("realtime_event_without_room", type=envelope.type)
            return
        delivered = await self.broadcast(envelope.room, envelope)
        logger.info("realtime_event_dispatched", type=envelope.type, room=envelope.room, recipients=delivered)

    async def aclose(self) -> None:
        await self._registry.close_all()
