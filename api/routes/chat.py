"""
聊天API路由 - 历史消息、私聊会话与在线状态
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from application.dtos.chat import (
    CreateDirectChatDTO,
    DirectRoomDTO,
    GetMessagesPayload,
    MessagesPageDTO,
    PresenceDTO,
)
from application.services.direct_chat_service import DirectChatService
from application.services.realtime_service import ChatRealtimeService
from api.dependencies import get_chat_service, get_current_principal, get_direct_chat_service
from core.response import success_response, Response as ApiResponse
from domain.chat import Principal

router = APIRouter(
    prefix="/chat",
    tags=["聊天"]
)


@router.get(
    "/rooms/{chat_type}/{room_id}/messages",
    summary="获取房间历史消息",
    response_model=ApiResponse[MessagesPageDTO],
    response_model_by_alias=True,
)
async def list_room_messages(
    chat_type: str,
    room_id: str,
    before: Optional[datetime] = Query(None, description="只返回早于该时间的消息"),
    limit: Optional[int] = Query(None, ge=1, description="每页条数"),
    principal: Principal = Depends(get_current_principal),
    service: ChatRealtimeService = Depends(get_chat_service),
):
    """
    按时间正序返回房间内未删除的消息

    - **chat_type**: `direct` 或 `group`
    - **before**: 游标，向前翻页
    """
    payload = GetMessagesPayload(room_id=room_id, chat_type=chat_type, before=before, limit=limit)
    page = await service.engine.history(principal, payload)
    return success_response(data=page)


@router.post(
    "/direct",
    summary="创建或获取私聊会话",
    response_model=ApiResponse[DirectRoomDTO],
    response_model_by_alias=True,
)
async def open_direct_chat(
    body: CreateDirectChatDTO,
    principal: Principal = Depends(get_current_principal),
    service: DirectChatService = Depends(get_direct_chat_service),
):
    room = await service.open_direct_chat(principal, body.participant_id)
    return success_response(data=room)


@router.get(
    "/presence",
    summary="当前在线用户",
    response_model=ApiResponse[PresenceDTO],
    response_model_by_alias=True,
)
async def get_presence(
    principal: Principal = Depends(get_current_principal),
    service: ChatRealtimeService = Depends(get_chat_service),
):
    online = await service.presence.snapshot()
    return success_response(data=PresenceDTO(online_users=list(online)))
