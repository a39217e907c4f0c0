"""
好友应用服务
"""
from typing import List

from application.dto import FriendDTO, FriendRequestDTO
from application.ports.chat_backend import ChatBackendPort
from core.logging_config import get_logger
from domain.chat import Identity


logger = get_logger(__name__)


class FriendApplicationService:
    def __init__(self, backend: ChatBackendPort):
        self._backend = backend

    async def list_friends(self, identity: Identity) -> List[FriendDTO]:
        return [FriendDTO.from_domain(f) for f in await self._backend.list_friends(identity.user_id)]

    async def list_incoming(self, identity: Identity) -> List[FriendRequestDTO]:
        requests = await self._backend.list_incoming_requests(identity.user_id)
        return [FriendRequestDTO.from_domain(r) for r in requests]

    async def send_request(self, identity: Identity, username: str) -> FriendRequestDTO:
        fr = await self._backend.send_friend_request(identity.user_id, username)
        logger.info("friend_request_sent", request_id=fr.id, sender_id=identity.user_id)
        return FriendRequestDTO.from_domain(fr)

    async def respond(self, identity: Identity, request_id: int, accept: bool) -> FriendRequestDTO:
        fr = await self._backend.respond_friend_request(request_id, accept)
        logger.info("friend_request_answered", request_id=request_id, accept=accept, user_id=identity.user_id)
        return FriendRequestDTO.from_domain(fr)

    async def remove(self, identity: Identity, friend_id: int) -> None:
        await self._backend.remove_friend(identity.user_id, friend_id)
