"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输

JSON 字段统一使用 camelCase（与现有前端客户端一致），Python 侧使用 snake_case。
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel

from domain.chat import ChatMessage, ChatRoom, ChatUser, Friend, FriendRequest, RoomMember


class DTOBase(BaseModel):
    """Base DTO: camelCase aliases and UTC-Z datetime serialization."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


# ---- 认证 ----

class RegisterRequest(DTOBase):
    """注册请求"""
    username: str
    password: str


class LoginRequest(DTOBase):
    """登录请求"""
    username: str
    password: str


class UserDTO(DTOBase):
    id: int
    username: str
    created_at_utc: Optional[datetime] = None

    @classmethod
    def from_domain(cls, user: ChatUser) -> "UserDTO":
        return cls(id=user.id, username=user.username, created_at_utc=user.created_at_utc)


class AuthResponse(DTOBase):
    """登录/注册结果：访问令牌 + 用户"""
    access_token: str
    user: UserDTO


# ---- 聊天室与消息 ----

class ChatRoomDTO(DTOBase):
    id: int
    name: str

    @classmethod
    def from_domain(cls, room: ChatRoom) -> "ChatRoomDTO":
        return cls(id=room.id, name=room.name)


class CreateChatRoomRequest(DTOBase):
    name: str


class MessageDTO(DTOBase):
    """消息信封（后端返回的规范表示）"""
    id: int
    chat_room_id: int
    sender_id: int
    text: str
    sent_at_utc: datetime
    is_edited: bool = False
    is_deleted: bool = False

    @classmethod
    def from_domain(cls, message: ChatMessage) -> "MessageDTO":
        return cls(
            id=message.id,
            chat_room_id=message.chat_room_id,
            sender_id=message.sender_id,
            text=message.text,
            sent_at_utc=message.sent_at_utc,
            is_edited=message.is_edited,
            is_deleted=message.is_deleted,
        )

    def to_wire(self) -> dict:
        """Hub payload form (camelCase, JSON-safe)."""
        return self.model_dump(mode="json", by_alias=True)


class SendMessageRequest(DTOBase):
    text: str


class UpdateMessageRequest(DTOBase):
    text: str


# ---- 好友 ----

class FriendDTO(DTOBase):
    user_id: int
    username: str

    @classmethod
    def from_domain(cls, friend: Friend) -> "FriendDTO":
        return cls(user_id=friend.user_id, username=friend.username)


class FriendRequestDTO(DTOBase):
    id: int
    sender_id: int
    sender_username: str
    receiver_id: int
    status: str
    created_at_utc: datetime

    @classmethod
    def from_domain(cls, fr: FriendRequest) -> "FriendRequestDTO":
        return cls(
            id=fr.id,
            sender_id=fr.sender_id,
            sender_username=fr.sender_username,
            receiver_id=fr.receiver_id,
            status=fr.status,
            created_at_utc=fr.created_at_utc,
        )


class SendFriendRequest(DTOBase):
    """按用户名发起好友请求"""
    username: str


class RespondFriendRequest(DTOBase):
    accept: bool


# ---- 群聊 ----

class CreateGroupChatRequest(DTOBase):
    name: str
    description: Optional[str] = None
    member_ids: List[int] = Field(default_factory=list)


class AddMemberRequest(DTOBase):
    user_id: int


class ChatRoomMemberDTO(DTOBase):
    user_id: int
    username: str
    # OWNER, ADMIN, MEMBER
    role: str

    @classmethod
    def from_domain(cls, member: RoomMember) -> "ChatRoomMemberDTO":
        return cls(user_id=member.user_id, username=member.username, role=member.role)
