"""Open (find or create) the direct room between two users."""
from __future__ import annotations

from typing import Callable

from application.dtos.chat import DirectRoomDTO
from core.logging_config import get_logger
from domain.chat import DirectRoom, Principal
from domain.common.exceptions import UserNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


class DirectChatService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def open_direct_chat(self, principal: Principal, participant_id: str) -> DirectRoomDTO:
        async with self._uow_factory() as uow:
            existing = await uow.chat_repository.find_direct_room_between(principal.user_id, participant_id)
            if existing is not None:
                return self._to_dto(existing)
            if await uow.user_repository.get_by_id(participant_id) is None:
                raise UserNotFoundException(participant_id)
            # DirectRoom rejects a self-chat (two identical participants)
            room = await uow.chat_repository.create_direct_room(
                DirectRoom(id=None, participants=[principal.user_id, participant_id])
            )
        logger.info("direct_chat_created", room_id=room.id, user_id=principal.user_id, participant_id=participant_id)
        return self._to_dto(room)

    @staticmethod
    def _to_dto(room: DirectRoom) -> DirectRoomDTO:
        return DirectRoomDTO(
            id=room.id or "",
            participants=list(room.participants),
            last_message=room.last_message_id,
            is_active=room.is_active,
            created_at=room.created_at,
        )
