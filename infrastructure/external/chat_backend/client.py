"""
Chat backend gRPC client.

Typed stub for the unary calls the gateway makes to the system of record.
Every gRPC failure is mapped to a BusinessException subclass here, in one
place, so the application layer never sees transport errors:

- NOT_FOUND                        -> ResourceNotFoundException
- PERMISSION_DENIED                -> PermissionDeniedException
- ALREADY_EXISTS                   -> ResourceAlreadyExistsException
- UNAUTHENTICATED                  -> UnauthorizedException
- INVALID_ARGUMENT / FAILED_PRECONDITION / OUT_OF_RANGE -> InvalidArgumentException
- UNAVAILABLE / DEADLINE_EXCEEDED  -> BackendUnavailableException
- anything else                    -> BackendInternalException

Read-only calls are retried on BackendUnavailable with exponential backoff;
mutations are never retried.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Sequence, Type

import grpc
from grpc_health.v1 import health_pb2, health_pb2_grpc
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import settings
from core.exceptions import UnauthorizedException
from core.logging_config import get_logger
from domain.chat import (
    ChatMessage,
    ChatRoom,
    ChatUser,
    Friend,
    FriendRequest,
    RoomMember,
)
from domain.common.exceptions import (
    BackendInternalException,
    BackendUnavailableException,
    BusinessException,
    InvalidArgumentException,
    PermissionDeniedException,
    ResourceAlreadyExistsException,
    ResourceNotFoundException,
)
from . import messages as pb
from .codec import WireModel, decoder, encode
from .interceptors import LoggingClientInterceptor, RequestIdClientInterceptor


logger = get_logger(__name__)

SERVICE_PACKAGE = "chat"


def _path(service: str, method: str) -> str:
    return f"/{SERVICE_PACKAGE}.{service}/{method}"


def map_rpc_error(exc: grpc.aio.AioRpcError) -> BusinessException:
    """Translate a backend gRPC status into the gateway error taxonomy."""
    code = exc.code()
    detail = exc.details() or ""
    if code == grpc.StatusCode.NOT_FOUND:
        return ResourceNotFoundException(detail or "Resource not found")
    if code == grpc.StatusCode.PERMISSION_DENIED:
        return PermissionDeniedException(detail or "Permission denied")
    if code == grpc.StatusCode.ALREADY_EXISTS:
        return ResourceAlreadyExistsException(detail or "Resource already exists")
    if code == grpc.StatusCode.UNAUTHENTICATED:
        return UnauthorizedException(detail or "Unauthorized")
    if code in (
        grpc.StatusCode.INVALID_ARGUMENT,
        grpc.StatusCode.FAILED_PRECONDITION,
        grpc.StatusCode.OUT_OF_RANGE,
    ):
        return InvalidArgumentException(detail or "Invalid argument")
    if code in (grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.DEADLINE_EXCEEDED):
        return BackendUnavailableException()
    return BackendInternalException(detail or "Chat backend internal error")


# ---- wire -> domain mappers ----

def _from_unix(seconds: int) -> datetime:
    return datetime.fromtimestamp(int(seconds or 0), tz=timezone.utc)


def message_from_wire(m: pb.Message) -> ChatMessage:
    return ChatMessage(
        id=m.id,
        chat_room_id=m.chat_room_id,
        sender_id=m.sender_id,
        text=m.text,
        sent_at_utc=_from_unix(m.sent_at_unix),
        is_edited=m.is_edited,
        is_deleted=m.is_deleted,
    )


def room_from_wire(r: pb.ChatRoom) -> ChatRoom:
    return ChatRoom(id=r.id, name=r.name)


def user_from_wire(u: pb.User) -> ChatUser:
    return ChatUser(
        id=u.id,
        username=u.username,
        created_at_utc=_from_unix(u.created_at_unix) if u.created_at_unix else None,
    )


def friend_request_from_wire(fr: pb.FriendRequestDto) -> FriendRequest:
    return FriendRequest(
        id=fr.id,
        sender_id=fr.sender_id,
        sender_username=fr.sender_username,
        receiver_id=fr.receiver_id,
        status=fr.status,
        created_at_utc=_from_unix(fr.created_at_unix),
    )


class GrpcChatBackendClient:
    """Implements ChatBackendPort over a single grpc.aio channel."""

    def __init__(
        self,
        target: Optional[str] = None,
        *,
        timeout_s: Optional[float] = None,
        read_retry_attempts: Optional[int] = None,
    ) -> None:
        cfg = settings.backend
        self.target = target or cfg.target
        self.timeout_s = cfg.timeout_s if timeout_s is None else timeout_s
        self.read_retry_attempts = cfg.read_retry_attempts if read_retry_attempts is None else read_retry_attempts
        self._channel: Optional[grpc.aio.Channel] = None
        self._callables: Dict[str, Callable[..., Any]] = {}

    # ---- lifecycle ----

    def _create_channel(self) -> grpc.aio.Channel:
        cfg = settings.backend
        options = [
            ("grpc.max_send_message_length", cfg.max_message_length),
            ("grpc.max_receive_message_length", cfg.max_message_length),
        ]
        interceptors = [RequestIdClientInterceptor(), LoggingClientInterceptor()]
        if cfg.tls.enabled:
            root_certificates = private_key = certificate_chain = None
            if cfg.tls.ca:
                with open(cfg.tls.ca, "rb") as f:
                    root_certificates = f.read()
            if cfg.tls.cert and cfg.tls.key:
                with open(cfg.tls.key, "rb") as f:
                    private_key = f.read()
                with open(cfg.tls.cert, "rb") as f:
                    certificate_chain = f.read()
            creds = grpc.ssl_channel_credentials(
                root_certificates=root_certificates,
                private_key=private_key,
                certificate_chain=certificate_chain,
            )
            return grpc.aio.secure_channel(self.target, creds, options=options, interceptors=interceptors)
        return grpc.aio.insecure_channel(self.target, options=options, interceptors=interceptors)

    @property
    def channel(self) -> grpc.aio.Channel:
        if self._channel is None:
            self._channel = self._create_channel()
            logger.info("backend_channel_created", target=self.target, tls=settings.backend.tls.enabled)
        return self._channel

    async def close(self) -> None:
        if self._channel is not None:
            await self._channel.close()
            self._channel = None
            self._callables.clear()
            logger.info("backend_channel_closed", target=self.target)

    async def __aenter__(self) -> "GrpcChatBackendClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ---- invocation ----

    async def _unary(
        self,
        service: str,
        method: str,
        request: WireModel,
        response_type: Type[WireModel],
        *,
        idempotent: bool = False,
    ) -> Any:
        path = _path(service, method)
        stub = self._callables.get(path)
        if stub is None:
            stub = self.channel.unary_unary(
                path,
                request_serializer=encode,
                response_deserializer=decoder(response_type),
            )
            self._callables[path] = stub

        async def _invoke() -> Any:
            try:
                return await stub(request, timeout=self.timeout_s)
            except grpc.aio.AioRpcError as exc:
                raise map_rpc_error(exc) from exc

        if not idempotent or self.read_retry_attempts <= 0:
            return await _invoke()

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.read_retry_attempts + 1),
            wait=wait_exponential(multiplier=0.1, max=2.0),
            retry=retry_if_exception_type(BackendUnavailableException),
            reraise=True,
        ):
            with attempt:
                return await _invoke()

    # ---- UserService ----

    async def register_user(self, username: str, password: str) -> ChatUser:
        resp = await self._unary(
            "UserService", "RegisterUser",
            pb.RegisterUserRequest(username=username, password=password), pb.UserResponse,
        )
        return user_from_wire(resp.user)

    async def login(self, username: str, password: str) -> ChatUser:
        resp = await self._unary(
            "UserService", "Login",
            pb.LoginRequest(username=username, password=password), pb.UserResponse,
        )
        return user_from_wire(resp.user)

    async def get_user(self, user_id: int) -> ChatUser:
        resp = await self._unary(
            "UserService", "GetUser", pb.GetUserRequest(user_id=user_id), pb.UserResponse, idempotent=True,
        )
        return user_from_wire(resp.user)

    # ---- ChatService ----

    async def list_chat_rooms(self) -> list[ChatRoom]:
        resp = await self._unary("ChatService", "ListChatRooms", pb.Empty(), pb.ListChatRoomsResponse, idempotent=True)
        return [room_from_wire(r) for r in resp.rooms]

    async def create_chat_room(self, name: str) -> ChatRoom:
        resp = await self._unary(
            "ChatService", "CreateChatRoom", pb.CreateChatRoomRequest(name=name), pb.ChatRoomResponse,
        )
        return room_from_wire(resp.room)

    async def get_messages(self, chat_room_id: int) -> list[ChatMessage]:
        resp = await self._unary(
            "ChatService", "GetMessages",
            pb.GetMessagesRequest(chat_room_id=chat_room_id), pb.GetMessagesResponse, idempotent=True,
        )
        return [message_from_wire(m) for m in resp.messages]

    async def search_messages(self, chat_room_id: int, query: str) -> list[ChatMessage]:
        resp = await self._unary(
            "ChatService", "SearchMessages",
            pb.SearchMessagesRequest(chat_room_id=chat_room_id, query=query), pb.GetMessagesResponse,
            idempotent=True,
        )
        return [message_from_wire(m) for m in resp.messages]

    async def send_message(self, chat_room_id: int, sender_id: int, text: str) -> ChatMessage:
        resp = await self._unary(
            "ChatService", "SendMessage",
            pb.SendMessageRequest(chat_room_id=chat_room_id, sender_id=sender_id, text=text),
            pb.SendMessageResponse,
        )
        return message_from_wire(resp.message)

    async def edit_message(self, chat_room_id: int, message_id: int, sender_id: int, text: str) -> ChatMessage:
        resp = await self._unary(
            "ChatService", "EditMessage",
            pb.EditMessageRequest(
                chat_room_id=chat_room_id, message_id=message_id, sender_id=sender_id, text=text,
            ),
            pb.Message,
        )
        return message_from_wire(resp)

    async def delete_message(self, chat_room_id: int, message_id: int, requester_id: int) -> ChatMessage:
        resp = await self._unary(
            "ChatService", "DeleteMessage",
            pb.DeleteMessageRequest(chat_room_id=chat_room_id, message_id=message_id, requester_id=requester_id),
            pb.Message,
        )
        return message_from_wire(resp)

    # ---- FriendService ----

    async def send_friend_request(self, requester_id: int, target_username: str) -> FriendRequest:
        resp = await self._unary(
            "FriendService", "SendFriendRequest",
            pb.SendFriendRequestRequest(requester_id=requester_id, target_username=target_username),
            pb.FriendRequestDto,
        )
        return friend_request_from_wire(resp)

    async def respond_friend_request(self, request_id: int, accept: bool) -> FriendRequest:
        resp = await self._unary(
            "FriendService", "RespondFriendRequest",
            pb.RespondFriendRequestRequest(request_id=request_id, accept=accept), pb.FriendRequestDto,
        )
        return friend_request_from_wire(resp)

    async def list_incoming_requests(self, user_id: int) -> list[FriendRequest]:
        resp = await self._unary(
            "FriendService", "ListIncomingRequests",
            pb.ListFriendRequestsRequest(user_id=user_id), pb.ListFriendRequestsResponse, idempotent=True,
        )
        return [friend_request_from_wire(r) for r in resp.requests]

    async def list_friends(self, user_id: int) -> list[Friend]:
        resp = await self._unary(
            "FriendService", "ListFriends",
            pb.ListFriendsRequest(user_id=user_id), pb.ListFriendsResponse, idempotent=True,
        )
        return [Friend(user_id=f.user_id, username=f.username) for f in resp.friends]

    async def remove_friend(self, user_id: int, friend_id: int) -> None:
        await self._unary(
            "FriendService", "RemoveFriend", pb.RemoveFriendRequest(user_id=user_id, friend_id=friend_id), pb.Empty,
        )

    # ---- GroupChatService ----

    async def create_group_chat(
        self, owner_id: int, name: str, description: str, member_ids: Sequence[int]
    ) -> ChatRoom:
        resp = await self._unary(
            "GroupChatService", "CreateGroupChat",
            pb.CreateGroupChatRequest(
                owner_id=owner_id, name=name, description=description or "", member_ids=list(member_ids),
            ),
            pb.ChatRoomResponse,
        )
        return room_from_wire(resp.room)

    async def add_member(self, chat_room_id: int, requester_id: int, user_id: int) -> None:
        await self._unary(
            "GroupChatService", "AddMember",
            pb.MemberChangeRequest(chat_room_id=chat_room_id, requester_id=requester_id, user_id=user_id), pb.Empty,
        )

    async def remove_member(self, chat_room_id: int, requester_id: int, user_id: int) -> None:
        await self._unary(
            "GroupChatService", "RemoveMember",
            pb.MemberChangeRequest(chat_room_id=chat_room_id, requester_id=requester_id, user_id=user_id), pb.Empty,
        )

    async def promote_member(self, chat_room_id: int, requester_id: int, user_id: int) -> None:
        await self._unary(
            "GroupChatService", "PromoteMember",
            pb.MemberChangeRequest(chat_room_id=chat_room_id, requester_id=requester_id, user_id=user_id), pb.Empty,
        )

    async def list_members(self, chat_room_id: int) -> list[RoomMember]:
        resp = await self._unary(
            "GroupChatService", "ListMembers",
            pb.ListMembersRequest(chat_room_id=chat_room_id), pb.ListMembersResponse, idempotent=True,
        )
        return [RoomMember(user_id=m.user_id, username=m.username, role=m.role) for m in resp.members]

    async def list_user_chat_rooms(self, user_id: int) -> list[ChatRoom]:
        resp = await self._unary(
            "GroupChatService", "ListUserChatRooms",
            pb.ListUserChatRoomsRequest(user_id=user_id), pb.ListChatRoomsResponse, idempotent=True,
        )
        return [room_from_wire(r) for r in resp.rooms]

    async def get_private_chat_room(self, user_id_1: int, user_id_2: int) -> ChatRoom:
        resp = await self._unary(
            "GroupChatService", "GetPrivateChatRoom",
            pb.GetPrivateChatRoomRequest(user_id1=user_id_1, user_id2=user_id_2), pb.ChatRoomResponse,
            idempotent=True,
        )
        return room_from_wire(resp.room)

    # ---- health ----

    async def check_health(self) -> bool:
        """Probe the backend through the standard gRPC health service.

        A backend that answers at all (even UNIMPLEMENTED for the health
        service) is reachable; only transport failures report False.
        """
        stub = health_pb2_grpc.HealthStub(self.channel)
        try:
            resp = await stub.Check(health_pb2.HealthCheckRequest(service=""), timeout=self.timeout_s)
        except grpc.aio.AioRpcError as exc:
            if exc.code() in (grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.DEADLINE_EXCEEDED):
                logger.warning("backend_health_unreachable", target=self.target, status=exc.code().name)
                return False
            return True
        return resp.status != health_pb2.HealthCheckResponse.NOT_SERVING


__all__ = [
    "GrpcChatBackendClient",
    "map_rpc_error",
    "message_from_wire",
]
