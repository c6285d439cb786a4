"""Room membership gate.

Authorizes join/send/read operations against a room before any side
effect happens. Direct rooms admit their two participants; group rooms
admit any listed member regardless of role.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from domain.chat import (
    ChatRepository,
    DirectRoom,
    GroupRoom,
    GroupRoomRef,
    Principal,
    Room,
    room_ref,
)
from domain.common.exceptions import ChatAccessDeniedException, RoomNotFoundException
from core.logging_config import get_logger


logger = get_logger(__name__)


class RoomAction(str, Enum):
    JOIN = "join"
    SEND = "send"
    READ = "read"


_DIRECT_DENIED = {
    RoomAction.JOIN: "Not authorized to join this chat",
    RoomAction.SEND: "Not authorized to send message to this chat",
    RoomAction.READ: "Not authorized to view this chat",
}
_GROUP_DENIED = {
    RoomAction.JOIN: "Not authorized to join this group",
    RoomAction.SEND: "Not authorized to send message to this group",
    RoomAction.READ: "Not authorized to view this group",
}


class RoomMembershipGate:
    async def authorize(
        self,
        repo: ChatRepository,
        principal: Principal,
        room_id: str,
        chat_type: Optional[object],
        action: RoomAction = RoomAction.SEND,
    ) -> Room:
        """Return the resolved room, or raise a scoped business error.

        ``chat_type`` None resolves the id across both room kinds; any other
        unrecognized value raises ``InvalidChatTypeException``.
        """
        if chat_type is None:
            room = await repo.locate_room(room_id)
            if room is None:
                raise RoomNotFoundException(room_id)
        else:
            ref = room_ref(chat_type, room_id)
            room = await repo.find_room(ref)
            if room is None:
                msg = "Group not found" if isinstance(ref, GroupRoomRef) else "Chat not found"
                raise RoomNotFoundException(room_id, message=msg)

        if isinstance(room, DirectRoom):
            allowed = room.has_participant(principal.user_id)
            denied = _DIRECT_DENIED[action]
        elif isinstance(room, GroupRoom):
            allowed = room.is_member(principal.user_id)
            denied = _GROUP_DENIED[action]
        else:  # pragma: no cover
            raise RoomNotFoundException(room_id)

        if not allowed:
            logger.info(
                "chat_access_denied",
                user_id=principal.user_id,
                room_id=room_id,
                action=action.value,
            )
            raise ChatAccessDeniedException(room_id, message=denied)
        return room
