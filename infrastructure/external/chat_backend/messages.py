"""Wire messages of the chat backend services (UserService, ChatService,
FriendService, GroupChatService)."""
from __future__ import annotations

from pydantic import Field

from .codec import WireModel


class Empty(WireModel):
    pass


# ---- shared entities ----

class User(WireModel):
    id: int = 0
    username: str = ""
    created_at_unix: int = 0


class ChatRoom(WireModel):
    id: int = 0
    name: str = ""


class Message(WireModel):
    id: int = 0
    chat_room_id: int = 0
    sender_id: int = 0
    text: str = ""
    sent_at_unix: int = 0
    is_edited: bool = False
    is_deleted: bool = False


class FriendRequestDto(WireModel):
    id: int = 0
    sender_id: int = 0
    sender_username: str = ""
    receiver_id: int = 0
    status: str = ""
    created_at_unix: int = 0


class FriendDto(WireModel):
    user_id: int = 0
    username: str = ""


class ChatRoomMemberDto(WireModel):
    user_id: int = 0
    username: str = ""
    role: str = ""


# ---- UserService ----

class RegisterUserRequest(WireModel):
    username: str
    password: str


class LoginRequest(WireModel):
    username: str
    password: str


class GetUserRequest(WireModel):
    user_id: int


class UserResponse(WireModel):
    user: User = Field(default_factory=User)


# ---- ChatService ----

class ListChatRoomsResponse(WireModel):
    rooms: list[ChatRoom] = Field(default_factory=list)


class CreateChatRoomRequest(WireModel):
    name: str


class ChatRoomResponse(WireModel):
    room: ChatRoom = Field(default_factory=ChatRoom)


class GetMessagesRequest(WireModel):
    chat_room_id: int


class SearchMessagesRequest(WireModel):
    chat_room_id: int
    query: str


class GetMessagesResponse(WireModel):
    messages: list[Message] = Field(default_factory=list)


class SendMessageRequest(WireModel):
    chat_room_id: int
    sender_id: int
    text: str


class SendMessageResponse(WireModel):
    message: Message = Field(default_factory=Message)


class EditMessageRequest(WireModel):
    message_id: int
    sender_id: int
    text: str
    chat_room_id: int = 0


class DeleteMessageRequest(WireModel):
    message_id: int
    requester_id: int
    chat_room_id: int = 0


# ---- FriendService ----

class SendFriendRequestRequest(WireModel):
    requester_id: int
    target_username: str


class RespondFriendRequestRequest(WireModel):
    request_id: int
    accept: bool


class ListFriendRequestsRequest(WireModel):
    user_id: int


class ListFriendRequestsResponse(WireModel):
    requests: list[FriendRequestDto] = Field(default_factory=list)


class ListFriendsRequest(WireModel):
    user_id: int


class ListFriendsResponse(WireModel):
    friends: list[FriendDto] = Field(default_factory=list)


class RemoveFriendRequest(WireModel):
    user_id: int
    friend_id: int


# ---- GroupChatService ----

class CreateGroupChatRequest(WireModel):
    owner_id: int
    name: str
    description: str = ""
    member_ids: list[int] = Field(default_factory=list)


class MemberChangeRequest(WireModel):
    chat_room_id: int
    requester_id: int
    user_id: int


class ListMembersRequest(WireModel):
    chat_room_id: int


class ListMembersResponse(WireModel):
    members: list[ChatRoomMemberDto] = Field(default_factory=list)


class ListUserChatRoomsRequest(WireModel):
    user_id: int


class GetPrivateChatRoomRequest(WireModel):
    user_id1: int = Field(alias="userId1")
    user_id2: int = Field(alias="userId2")
