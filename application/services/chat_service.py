"""
聊天室查询应用服务 - 只读操作与建房；消息变更见 FanoutService
"""
from typing import List

from application.dto import ChatRoomDTO, MessageDTO
from application.ports.chat_backend import ChatBackendPort


class ChatApplicationService:
    def __init__(self, backend: ChatBackendPort):
        self._backend = backend

    async def list_rooms(self) -> List[ChatRoomDTO]:
        return [ChatRoomDTO.from_domain(r) for r in await self._backend.list_chat_rooms()]

    async def create_room(self, name: str) -> ChatRoomDTO:
        return ChatRoomDTO.from_domain(await self._backend.create_chat_room(name))

    async def get_messages(self, room_id: int) -> List[MessageDTO]:
        return [MessageDTO.from_domain(m) for m in await self._backend.get_messages(room_id)]

    async def search_messages(self, room_id: int, query: str) -> List[MessageDTO]:
        """空白查询直接返回空列表，不调用后端"""
        if not query or not query.strip():
            return []
        return [MessageDTO.from_domain(m) for m in await self._backend.search_messages(room_id, query)]
