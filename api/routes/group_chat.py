"""
群聊API路由 - 权限（OWNER/ADMIN/MEMBER）由后端判定，越权时返回 403
"""
from typing import List

from fastapi import APIRouter, Depends

from api.dependencies import get_current_identity, get_group_chat_service
from application.dto import AddMemberRequest, ChatRoomDTO, ChatRoomMemberDTO, CreateGroupChatRequest
from application.services.group_chat_service import GroupChatApplicationService
from core.response import Response as ApiResponse, success_response
from domain.chat import Identity

router = APIRouter(prefix="/groupchat", tags=["群聊"])


@router.post("", summary="创建群聊", response_model=ApiResponse[ChatRoomDTO])
async def create_group_chat(
    body: CreateGroupChatRequest,
    identity: Identity = Depends(get_current_identity),
    service: GroupChatApplicationService = Depends(get_group_chat_service),
):
    return success_response(data=await service.create_group(identity, body.name, body.description, body.member_ids))


@router.get("/my-chats", summary="我的聊天", response_model=ApiResponse[List[ChatRoomDTO]])
async def my_chats(
    identity: Identity = Depends(get_current_identity),
    service: GroupChatApplicationService = Depends(get_group_chat_service),
):
    return success_response(data=await service.my_chats(identity))


@router.get("/private/{user_id}", summary="私聊房间", response_model=ApiResponse[ChatRoomDTO])
async def private_room(
    user_id: int,
    identity: Identity = Depends(get_current_identity),
    service: GroupChatApplicationService = Depends(get_group_chat_service),
):
    """获取（不存在时由后端创建）与指定用户的私聊房间"""
    return success_response(data=await service.private_room(identity, user_id))


@router.post("/{room_id}/members", summary="添加成员", response_model=ApiResponse[None])
async def add_member(
    room_id: int,
    body: AddMemberRequest,
    identity: Identity = Depends(get_current_identity),
    service: GroupChatApplicationService = Depends(get_group_chat_service),
):
    await service.add_member(identity, room_id, body.user_id)
    return success_response()


@router.get("/{room_id}/members", summary="成员列表", response_model=ApiResponse[List[ChatRoomMemberDTO]])
async def list_members(
    room_id: int,
    _identity: Identity = Depends(get_current_identity),
    service: GroupChatApplicationService = Depends(get_group_chat_service),
):
    return success_response(data=await service.list_members(room_id))


@router.delete("/{room_id}/members/{user_id}", summary="移除成员", response_model=ApiResponse[None])
async def remove_member(
    room_id: int,
    user_id: int,
    identity: Identity = Depends(get_current_identity),
    service: GroupChatApplicationService = Depends(get_group_chat_service),
):
    await service.remove_member(identity, room_id, user_id)
    return success_response()


@router.post("/{room_id}/members/{user_id}/promote", summary="提升为管理员", response_model=ApiResponse[None])
async def promote_member(
    room_id: int,
    user_id: int,
    identity: Identity = Depends(get_current_identity),
    service: GroupChatApplicationService = Depends(get_group_chat_service),
):
    await service.promote_member(identity, room_id, user_id)
    return success_response()
