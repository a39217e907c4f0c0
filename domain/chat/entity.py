"""
聊天领域值对象 - 网关只转发后端（系统记录方）返回的实体，从不自行构造或存储
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Identity:
    """已认证的主体身份，连接生命周期内不可变"""
    user_id: int
    username: Optional[str] = None

    @property
    def subject(self) -> str:
        return str(self.user_id)


@dataclass(frozen=True)
class ChatMessage:
    """消息信封：后端返回的规范表示，原样广播给订阅者"""
    id: int
    chat_room_id: int
    sender_id: int
    text: str
    sent_at_utc: datetime
    is_edited: bool = False
    is_deleted: bool = False

    @property
    def room_key(self) -> str:
        """Group key used by the membership table."""
        return str(self.chat_room_id)


@dataclass(frozen=True)
class ChatRoom:
    id: int
    name: str


@dataclass(frozen=True)
class ChatUser:
    id: int
    username: str
    created_at_utc: Optional[datetime] = None


@dataclass(frozen=True)
class RoomMember:
    user_id: int
    username: str
    # OWNER, ADMIN, MEMBER
    role: str


@dataclass(frozen=True)
class Friend:
    user_id: int
    username: str


@dataclass(frozen=True)
class FriendRequest:
    id: int
    sender_id: int
    sender_username: str
    receiver_id: int
    status: str
    created_at_utc: datetime
