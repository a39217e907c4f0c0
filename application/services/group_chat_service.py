"""
群聊应用服务 - 成员权限（OWNER/ADMIN/MEMBER）由后端判定
"""
from typing import List, Optional, Sequence

from application.dto import ChatRoomDTO, ChatRoomMemberDTO
from application.ports.chat_backend import ChatBackendPort
from core.logging_config import get_logger
from domain.chat import Identity


logger = get_logger(__name__)


class GroupChatApplicationService:
    def __init__(self, backend: ChatBackendPort):
        self._backend = backend

    async def create_group(
        self,
        identity: Identity,
        name: str,
        description: Optional[str],
        member_ids: Sequence[int],
    ) -> ChatRoomDTO:
        room = await self._backend.create_group_chat(identity.user_id, name, description or "", member_ids)
        logger.info("group_chat_created", room_id=room.id, owner_id=identity.user_id, members=len(member_ids))
        return ChatRoomDTO.from_domain(room)

    async def add_member(self, identity: Identity, room_id: int, user_id: int) -> None:
        await self._backend.add_member(room_id, identity.user_id, user_id)

    async def remove_member(self, identity: Identity, room_id: int, user_id: int) -> None:
        await self._backend.remove_member(room_id, identity.user_id, user_id)

    async def promote_member(self, identity: Identity, room_id: int, user_id: int) -> None:
        await self._backend.promote_member(room_id, identity.user_id, user_id)

    async def list_members(self, room_id: int) -> List[ChatRoomMemberDTO]:
        return [ChatRoomMemberDTO.from_domain(m) for m in await self._backend.list_members(room_id)]

    async def my_chats(self, identity: Identity) -> List[ChatRoomDTO]:
        return [ChatRoomDTO.from_domain(r) for r in await self._backend.list_user_chat_rooms(identity.user_id)]

    async def private_room(self, identity: Identity, other_user_id: int) -> ChatRoomDTO:
        return ChatRoomDTO.from_domain(await self._backend.get_private_chat_room(identity.user_id, other_user_id))
