"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("JWT__SECRET_KEY", "test-secret-key")
os.environ.setdefault("REALTIME__BROKER", "inmemory")
os.environ.setdefault("DEBUG", "false")

from datetime import datetime, timezone  # noqa: E402
from typing import Dict, List, Optional, Sequence, Tuple  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from application.services.token_service import TokenService  # noqa: E402
from core.exceptions import UnauthorizedException  # noqa: E402
from domain.chat import ChatMessage, ChatRoom, ChatUser, Friend, FriendRequest, RoomMember  # noqa: E402
from domain.common.exceptions import (  # noqa: E402
    PermissionDeniedException,
    ResourceAlreadyExistsException,
    ResourceNotFoundException,
)
from infrastructure.realtime.brokers import InMemoryRealtimeBroker  # noqa: E402


class FakeChatBackend:
    """In-memory stand-in for the chat backend (system of record)."""

    def __init__(self) -> None:
        self.users: Dict[int, Tuple[ChatUser, str]] = {}
        self.rooms: Dict[int, ChatRoom] = {7: ChatRoom(id=7, name="general")}
        self.messages: Dict[int, ChatMessage] = {}
        self.members: Dict[int, List[RoomMember]] = {}
        self.friend_requests: Dict[int, FriendRequest] = {}
        self.friends: Dict[int, List[Friend]] = {}
        self.calls: List[str] = []
        self.healthy = True
        self._next_id = 100

    def _id(self) -> int:
        self._next_id += 1
        return self._next_id

    def add_user(self, user_id: int, username: str, password: str = "pw") -> ChatUser:
        user = ChatUser(id=user_id, username=username, created_at_utc=datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.users[user_id] = (user, password)
        return user

    def _room(self, room_id: int) -> ChatRoom:
        room = self.rooms.get(room_id)
        if room is None:
            raise ResourceNotFoundException("Chat room not found")
        return room

    # Users
    async def register_user(self, username: str, password: str) -> ChatUser:
        self.calls.append("RegisterUser")
        if any(u.username == username for u, _ in self.users.values()):
            raise ResourceAlreadyExistsException("Username already taken")
        return self.add_user(self._id(), username, password)

    async def login(self, username: str, password: str) -> ChatUser:
        self.calls.append("Login")
        for user, pw in self.users.values():
            if user.username == username and pw == password:
                return user
        raise UnauthorizedException("Invalid credentials")

    async def get_user(self, user_id: int) -> ChatUser:
        self.calls.append("GetUser")
        if user_id not in self.users:
            raise ResourceNotFoundException("User not found")
        return self.users[user_id][0]

    # Rooms and messages
    async def list_chat_rooms(self) -> List[ChatRoom]:
        self.calls.append("ListChatRooms")
        return list(self.rooms.values())

    async def create_chat_room(self, name: str) -> ChatRoom:
        self.calls.append("CreateChatRoom")
        if any(r.name == name for r in self.rooms.values()):
            raise ResourceAlreadyExistsException("Chat room already exists")
        room = ChatRoom(id=self._id(), name=name)
        self.rooms[room.id] = room
        return room

    async def get_messages(self, chat_room_id: int) -> List[ChatMessage]:
        self.calls.append("GetMessages")
        self._room(chat_room_id)
        return [m for m in self.messages.values() if m.chat_room_id == chat_room_id]

    async def search_messages(self, chat_room_id: int, query: str) -> List[ChatMessage]:
        self.calls.append("SearchMessages")
        return [m for m in await self.get_messages(chat_room_id) if query.lower() in m.text.lower()]

    async def send_message(self, chat_room_id: int, sender_id: int, text: str) -> ChatMessage:
        self.calls.append("SendMessage")
        self._room(chat_room_id)
        msg = ChatMessage(
            id=self._id(),
            chat_room_id=chat_room_id,
            sender_id=sender_id,
            text=text,
            sent_at_utc=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        )
        self.messages[msg.id] = msg
        return msg

    def _own_message(self, message_id: int, user_id: int) -> ChatMessage:
        msg = self.messages.get(message_id)
        if msg is None:
            raise ResourceNotFoundException("Message not found")
        if msg.sender_id != user_id:
            raise PermissionDeniedException("Not the author of this message")
        return msg

    async def edit_message(self, chat_room_id: int, message_id: int, sender_id: int, text: str) -> ChatMessage:
        self.calls.append("EditMessage")
        msg = self._own_message(message_id, sender_id)
        edited = ChatMessage(
            id=msg.id, chat_room_id=msg.chat_room_id, sender_id=msg.sender_id,
            text=text, sent_at_utc=msg.sent_at_utc, is_edited=True,
        )
        self.messages[msg.id] = edited
        return edited

    async def delete_message(self, chat_room_id: int, message_id: int, requester_id: int) -> ChatMessage:
        self.calls.append("DeleteMessage")
        msg = self._own_message(message_id, requester_id)
        deleted = ChatMessage(
            id=msg.id, chat_room_id=msg.chat_room_id, sender_id=msg.sender_id,
            text="", sent_at_utc=msg.sent_at_utc, is_edited=msg.is_edited, is_deleted=True,
        )
        self.messages[msg.id] = deleted
        return deleted

    # Friends
    async def send_friend_request(self, requester_id: int, target_username: str) -> FriendRequest:
        self.calls.append("SendFriendRequest")
        target = next((u for u, _ in self.users.values() if u.username == target_username), None)
        if target is None:
            raise ResourceNotFoundException("User not found")
        fr = FriendRequest(
            id=self._id(), sender_id=requester_id, sender_username=self.users[requester_id][0].username,
            receiver_id=target.id, status="PENDING", created_at_utc=datetime(2024, 1, 2, tzinfo=timezone.utc),
        )
        self.friend_requests[fr.id] = fr
        return fr

    async def respond_friend_request(self, request_id: int, accept: bool) -> FriendRequest:
        self.calls.append("RespondFriendRequest")
        fr = self.friend_requests.get(request_id)
        if fr is None:
            raise ResourceNotFoundException("Friend request not found")
        answered = FriendRequest(
            id=fr.id, sender_id=fr.sender_id, sender_username=fr.sender_username, receiver_id=fr.receiver_id,
            status="ACCEPTED" if accept else "REJECTED", created_at_utc=fr.created_at_utc,
        )
        self.friend_requests[fr.id] = answered
        if accept:
            self.friends.setdefault(fr.receiver_id, []).append(Friend(fr.sender_id, fr.sender_username))
        return answered

    async def list_incoming_requests(self, user_id: int) -> List[FriendRequest]:
        self.calls.append("ListIncomingRequests")
        return [r for r in self.friend_requests.values() if r.receiver_id == user_id and r.status == "PENDING"]

    async def list_friends(self, user_id: int) -> List[Friend]:
        self.calls.append("ListFriends")
        return list(self.friends.get(user_id, []))

    async def remove_friend(self, user_id: int, friend_id: int) -> None:
        self.calls.append("RemoveFriend")
        self.friends[user_id] = [f for f in self.friends.get(user_id, []) if f.user_id != friend_id]

    # Group chats
    async def create_group_chat(
        self, owner_id: int, name: str, description: str, member_ids: Sequence[int]
    ) -> ChatRoom:
        self.calls.append("CreateGroupChat")
        room = ChatRoom(id=self._id(), name=name)
        self.rooms[room.id] = room
        owner = self.users[owner_id][0]
        self.members[room.id] = [RoomMember(owner.id, owner.username, "OWNER")] + [
            RoomMember(uid, self.users[uid][0].username, "MEMBER") for uid in member_ids if uid in self.users
        ]
        return room

    def _role(self, room_id: int, user_id: int) -> Optional[str]:
        return next((m.role for m in self.members.get(room_id, []) if m.user_id == user_id), None)

    async def add_member(self, chat_room_id: int, requester_id: int, user_id: int) -> None:
        self.calls.append("AddMember")
        if self._role(chat_room_id, requester_id) not in ("OWNER", "ADMIN"):
            raise PermissionDeniedException("Only owners and admins can add members")
        self.members[chat_room_id].append(RoomMember(user_id, self.users[user_id][0].username, "MEMBER"))

    async def remove_member(self, chat_room_id: int, requester_id: int, user_id: int) -> None:
        self.calls.append("RemoveMember")
        if self._role(chat_room_id, requester_id) not in ("OWNER", "ADMIN"):
            raise PermissionDeniedException("Only owners and admins can remove members")
        self.members[chat_room_id] = [m for m in self.members[chat_room_id] if m.user_id != user_id]

    async def promote_member(self, chat_room_id: int, requester_id: int, user_id: int) -> None:
        self.calls.append("PromoteMember")
        if self._role(chat_room_id, requester_id) != "OWNER":
            raise PermissionDeniedException("Only the owner can promote members")
        self.members[chat_room_id] = [
            RoomMember(m.user_id, m.username, "ADMIN") if m.user_id == user_id else m
            for m in self.members[chat_room_id]
        ]

    async def list_members(self, chat_room_id: int) -> List[RoomMember]:
        self.calls.append("ListMembers")
        self._room(chat_room_id)
        return list(self.members.get(chat_room_id, []))

    async def list_user_chat_rooms(self, user_id: int) -> List[ChatRoom]:
        self.calls.append("ListUserChatRooms")
        return [self.rooms[rid] for rid, ms in self.members.items() if any(m.user_id == user_id for m in ms)]

    async def get_private_chat_room(self, user_id_1: int, user_id_2: int) -> ChatRoom:
        self.calls.append("GetPrivateChatRoom")
        if user_id_2 not in self.users:
            raise ResourceNotFoundException("User not found")
        low, high = sorted((user_id_1, user_id_2))
        room_id = 10_000 + low * 100 + high
        return self.rooms.setdefault(room_id, ChatRoom(id=room_id, name=f"private-{low}-{high}"))

    async def check_health(self) -> bool:
        return self.healthy


@pytest.fixture
def fake_backend() -> FakeChatBackend:
    backend = FakeChatBackend()
    backend.add_user(1, "alice")
    backend.add_user(2, "bob")
    backend.add_user(3, "carol")
    return backend


@pytest.fixture
def token_service() -> TokenService:
    return TokenService()


@pytest.fixture
def make_token(token_service, fake_backend):
    def _make(user_id: int) -> str:
        user, _ = fake_backend.users[user_id]
        return token_service.create_access_token(user)

    return _make


@pytest.fixture
def app(fake_backend):
    from main import create_app

    return create_app(backend=fake_backend, broker=InMemoryRealtimeBroker())


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(make_token):
    def _headers(user_id: int) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers
