"""Read-receipt tracker: idempotent per-reader acknowledgements."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from application.dtos.chat import MessageReadDTO
from application.ports.realtime import Envelope
from application.utils.locks import KeyedLock
from core.logging_config import get_logger
from domain.chat import Principal
from domain.common.exceptions import (
    BusinessException,
    MessageNotFoundException,
    PersistenceException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.realtime.connection_manager import ConnectionManager


logger = get_logger(__name__)


class ReadReceiptTracker:
    def __init__(
        self,
        *,
        uow_factory: Callable[..., AbstractUnitOfWork],
        connections: ConnectionManager,
    ) -> None:
        self._uow_factory = uow_factory
        self._conn = connections
        self._locks = KeyedLock()

    async def mark_as_read(self, principal: Principal, message_id: str) -> Optional[MessageReadDTO]:
        """Record that ``principal`` read the message and tell the room.

        Returns None, without broadcasting, when the reader already has a receipt.
        """
        # same reader on two connections must not race past the duplicate check
        async with self._locks.hold((message_id, principal.user_id)):
            try:
                async with self._uow_factory() as uow:
                    message = await uow.chat_repository.get_message(message_id)
                    if message is None:
                        raise MessageNotFoundException(message_id)
                    receipt = message.mark_read(principal.user_id, at=datetime.now(timezone.utc))
                    if receipt is None:
                        return None
                    if not await uow.chat_repository.append_read_receipt(message_id, receipt):
                        return None
            except BusinessException:
                raise
            except Exception as exc:
                logger.error(
                    "chat_read_receipt_failed",
                    message_id=message_id,
                    user_id=principal.user_id,
                    error=str(exc),
                    exc_info=True,
                )
                raise PersistenceException(
                    "Failed to mark message as read", operation="append_read_receipt"
                ) from exc

        room_id = message.room.room_id
        dto = MessageReadDTO(message_id=message_id, user_id=principal.user_id, read_at=receipt.read_at)
        await self._conn.broadcast_room(room_id, Envelope(type="message_read", room=room_id, data=dto.to_wire()))
        logger.info("chat_read_receipt_added", message_id=message_id, user_id=principal.user_id, room_id=room_id)
        return dto
