"""
Chat backend port: the unary operations the gateway needs from the
system of record. Implementations raise BusinessException subclasses
(NotFound, PermissionDenied, AlreadyExists, Unauthorized, InvalidArgument,
BackendUnavailable, BackendInternal) instead of transport errors.
"""
from __future__ import annotations

from typing import Protocol, Sequence

from domain.chat import (
    ChatMessage,
    ChatRoom,
    ChatUser,
    Friend,
    FriendRequest,
    RoomMember,
)


class ChatBackendPort(Protocol):
    # Users
    async def register_user(self, username: str, password: str) -> ChatUser: ...

    async def login(self, username: str, password: str) -> ChatUser: ...

    async def get_user(self, user_id: int) -> ChatUser: ...

    # Rooms and messages
    async def list_chat_rooms(self) -> list[ChatRoom]: ...

    async def create_chat_room(self, name: str) -> ChatRoom: ...

    async def get_messages(self, chat_room_id: int) -> list[ChatMessage]: ...

    async def search_messages(self, chat_room_id: int, query: str) -> list[ChatMessage]: ...

    async def send_message(self, chat_room_id: int, sender_id: int, text: str) -> ChatMessage: ...

    async def edit_message(self, chat_room_id: int, message_id: int, sender_id: int, text: str) -> ChatMessage: ...

    async def delete_message(self, chat_room_id: int, message_id: int, requester_id: int) -> ChatMessage: ...

    # Friends
    async def send_friend_request(self, requester_id: int, target_username: str) -> FriendRequest: ...

    async def respond_friend_request(self, request_id: int, accept: bool) -> FriendRequest: ...

    async def list_incoming_requests(self, user_id: int) -> list[FriendRequest]: ...

    async def list_friends(self, user_id: int) -> list[Friend]: ...

    async def remove_friend(self, user_id: int, friend_id: int) -> None: ...

    # Group chats
    async def create_group_chat(
        self, owner_id: int, name: str, description: str, member_ids: Sequence[int]
    ) -> ChatRoom: ...

    async def add_member(self, chat_room_id: int, requester_id: int, user_id: int) -> None: ...

    async def remove_member(self, chat_room_id: int, requester_id: int, user_id: int) -> None: ...

    async def promote_member(self, chat_room_id: int, requester_id: int, user_id: int) -> None: ...

    async def list_members(self, chat_room_id: int) -> list[RoomMember]: ...

    async def list_user_chat_rooms(self, user_id: int) -> list[ChatRoom]: ...

    async def get_private_chat_room(self, user_id_1: int, user_id_2: int) -> ChatRoom: ...

    async def check_health(self) -> bool: ...


__all__ = ["ChatBackendPort"]
