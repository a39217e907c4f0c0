"""
好友API路由
"""
from typing import List

from fastapi import APIRouter, Depends

from api.dependencies import get_current_identity, get_friend_service
from application.dto import FriendDTO, FriendRequestDTO, RespondFriendRequest, SendFriendRequest
from application.services.friend_service import FriendApplicationService
from core.response import Response as ApiResponse, success_response
from domain.chat import Identity

router = APIRouter(prefix="/friends", tags=["好友"])


@router.get("", summary="好友列表", response_model=ApiResponse[List[FriendDTO]])
async def list_friends(
    identity: Identity = Depends(get_current_identity),
    service: FriendApplicationService = Depends(get_friend_service),
):
    return success_response(data=await service.list_friends(identity))


@router.get("/requests", summary="收到的好友请求", response_model=ApiResponse[List[FriendRequestDTO]])
async def incoming_requests(
    identity: Identity = Depends(get_current_identity),
    service: FriendApplicationService = Depends(get_friend_service),
):
    return success_response(data=await service.list_incoming(identity))


@router.post("/requests", summary="发送好友请求", response_model=ApiResponse[FriendRequestDTO])
async def send_request(
    body: SendFriendRequest,
    identity: Identity = Depends(get_current_identity),
    service: FriendApplicationService = Depends(get_friend_service),
):
    return success_response(data=await service.send_request(identity, body.username))


@router.post("/requests/{request_id}", summary="处理好友请求", response_model=ApiResponse[FriendRequestDTO])
async def respond_request(
    request_id: int,
    body: RespondFriendRequest,
    identity: Identity = Depends(get_current_identity),
    service: FriendApplicationService = Depends(get_friend_service),
):
    return success_response(data=await service.respond(identity, request_id, body.accept))


@router.delete("/{friend_id}", summary="删除好友", response_model=ApiResponse[None])
async def remove_friend(
    friend_id: int,
    identity: Identity = Depends(get_current_identity),
    service: FriendApplicationService = Depends(get_friend_service),
):
    await service.remove(identity, friend_id)
    return success_response()
