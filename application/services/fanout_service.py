"""
消息扇出服务 - 每一次消息变更（发送/编辑/删除）

1. 解析操作者身份（缺失则 Unauthorized）
2. 调用后端 RPC；失败直接抛出，绝不广播
3. 以后端返回的规范消息作为信封（不在本地重建）
4. 广播给房间内所有当前订阅者，事件类型 created / edited / deleted
5. HTTP 发起的变更同时把信封同步返回给调用方

调用方若同时订阅了该房间，会收到两次同一信封（直接回复 + 广播），
消费端按 (消息 id, 事件类型) 幂等处理。
"""
from __future__ import annotations

from typing import Optional

from application.dto import MessageDTO
from application.ports.chat_backend import ChatBackendPort
from application.ports.realtime import Envelope
from application.services.realtime_service import RealtimeService
from core.exceptions import UnauthorizedException
from core.logging_config import get_logger
from domain.chat import ChatMessage, EventKind, Identity, MutationOutcome, Transport


logger = get_logger(__name__)


def build_envelope(room: str, message: ChatMessage, kind: EventKind) -> Envelope:
    return Envelope(
        type=kind.hub_event,
        room=room,
        data=MessageDTO.from_domain(message).to_wire(),
    )


class FanoutService:
    def __init__(self, backend: ChatBackendPort, realtime: RealtimeService):
        self._backend = backend
        self._realtime = realtime

    @staticmethod
    def _require_identity(identity: Optional[Identity]) -> Identity:
        if identity is None:
            raise UnauthorizedException("Missing identity")
        return identity

    async def send_message(
        self,
        identity: Optional[Identity],
        room_id: int,
        text: str,
        *,
        origin: Transport = Transport.HTTP,
    ) -> MutationOutcome:
        actor = self._require_identity(identity)
        message = await self._backend.send_message(room_id, actor.user_id, text)
        return await self._dispatch(room_id, message, EventKind.CREATED, origin, actor)

    async def edit_message(
        self,
        identity: Optional[Identity],
        room_id: int,
        message_id: int,
        text: str,
        *,
        origin: Transport = Transport.HTTP,
    ) -> MutationOutcome:
        actor = self._require_identity(identity)
        message = await self._backend.edit_message(room_id, message_id, actor.user_id, text)
        return await self._dispatch(room_id, message, EventKind.EDITED, origin, actor)

    async def delete_message(
        self,
        identity: Optional[Identity],
        room_id: int,
        message_id: int,
        *,
        origin: Transport = Transport.HTTP,
    ) -> MutationOutcome:
        actor = self._require_identity(identity)
        message = await self._backend.delete_message(room_id, message_id, actor.user_id)
        return await self._dispatch(room_id, message, EventKind.DELETED, origin, actor)

    async def _dispatch(
        self,
        requested_room: int,
        message: ChatMessage,
        kind: EventKind,
        origin: Transport,
        actor: Identity,
    ) -> MutationOutcome:
        # 广播组以后端返回的 chatRoomId 为准
        room = message.room_key if message.chat_room_id else str(requested_room)
        if room != str(requested_room):
            logger.warning(
                "fanout_room_mismatch",
                requested_room=requested_room,
                canonical_room=room,
                message_id=message.id,
            )
        await self._realtime.publish(room, build_envelope(room, message, kind))
        logger.info(
            "fanout_broadcast",
            room=room,
            message_id=message.id,
            kind=kind.value,
            origin=origin.value,
            user_id=actor.user_id,
        )
        return MutationOutcome(room_id=room, message=message, kind=kind, origin=origin)


__all__ = ["FanoutService", "build_envelope"]
