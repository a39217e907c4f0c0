"""
聊天室与消息API路由

消息发送/编辑/删除经由 FanoutService：先调用后端，成功后广播给房间订阅者，
并把同一信封作为本次调用的结果返回。
"""
from typing import List

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_chat_service, get_current_identity, get_fanout_service
from application.dto import (
    ChatRoomDTO,
    CreateChatRoomRequest,
    MessageDTO,
    SendMessageRequest,
    UpdateMessageRequest,
)
from application.services.chat_service import ChatApplicationService
from application.services.fanout_service import FanoutService
from core.response import Response as ApiResponse, success_response
from domain.chat import Identity, Transport

router = APIRouter(prefix="/chatrooms", tags=["聊天室"])


@router.get("", summary="聊天室列表", response_model=ApiResponse[List[ChatRoomDTO]])
async def list_rooms(
    _identity: Identity = Depends(get_current_identity),
    service: ChatApplicationService = Depends(get_chat_service),
):
    return success_response(data=await service.list_rooms())


@router.post("", summary="创建聊天室", response_model=ApiResponse[ChatRoomDTO])
async def create_room(
    body: CreateChatRoomRequest,
    _identity: Identity = Depends(get_current_identity),
    service: ChatApplicationService = Depends(get_chat_service),
):
    """同名聊天室已存在时返回 409"""
    return success_response(data=await service.create_room(body.name))


@router.get("/{room_id}/messages", summary="消息列表", response_model=ApiResponse[List[MessageDTO]])
async def get_messages(
    room_id: int,
    _identity: Identity = Depends(get_current_identity),
    service: ChatApplicationService = Depends(get_chat_service),
):
    return success_response(data=await service.get_messages(room_id))


@router.get("/{room_id}/messages/search", summary="搜索消息", response_model=ApiResponse[List[MessageDTO]])
async def search_messages(
    room_id: int,
    query: str = Query(default=""),
    _identity: Identity = Depends(get_current_identity),
    service: ChatApplicationService = Depends(get_chat_service),
):
    return success_response(data=await service.search_messages(room_id, query))


@router.post("/{room_id}/messages", summary="发送消息", response_model=ApiResponse[MessageDTO])
async def send_message(
    room_id: int,
    body: SendMessageRequest,
    identity: Identity = Depends(get_current_identity),
    fanout: FanoutService = Depends(get_fanout_service),
):
    outcome = await fanout.send_message(identity, room_id, body.text, origin=Transport.HTTP)
    return success_response(data=MessageDTO.from_domain(outcome.message))


@router.put("/{room_id}/messages/{message_id}", summary="编辑消息", response_model=ApiResponse[MessageDTO])
async def edit_message(
    room_id: int,
    message_id: int,
    body: UpdateMessageRequest,
    identity: Identity = Depends(get_current_identity),
    fanout: FanoutService = Depends(get_fanout_service),
):
    """只能编辑自己的消息，否则 403"""
    outcome = await fanout.edit_message(identity, room_id, message_id, body.text, origin=Transport.HTTP)
    return success_response(data=MessageDTO.from_domain(outcome.message))


@router.delete("/{room_id}/messages/{message_id}", summary="删除消息", response_model=ApiResponse[MessageDTO])
async def delete_message(
    room_id: int,
    message_id: int,
    identity: Identity = Depends(get_current_identity),
    fanout: FanoutService = Depends(get_fanout_service),
):
    outcome = await fanout.delete_message(identity, room_id, message_id, origin=Transport.HTTP)
    return success_response(data=MessageDTO.from_domain(outcome.message))
