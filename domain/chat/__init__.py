"""Chat domain: value objects relayed from the chat backend."""
from .entity import (
    Identity,
    ChatMessage,
    ChatRoom,
    ChatUser,
    RoomMember,
    Friend,
    FriendRequest,
)
from .events import EventKind, Transport, MutationOutcome

__all__ = [
    "Identity",
    "ChatMessage",
    "ChatRoom",
    "ChatUser",
    "RoomMember",
    "Friend",
    "FriendRequest",
    "EventKind",
    "Transport",
    "MutationOutcome",
]
