"""
Message broadcast engine: validated send, durable write, room fan-out.

Each send holds the room's lock from persistence through enqueueing the
``new_message`` frames, so subscribers see messages of one room in the
order they were committed. Sends to different rooms never contend.
"""
from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional

from application.dtos.chat import (
    GetMessagesPayload,
    MessageDeletedDTO,
    MessageDTO,
    MessagesPageDTO,
    SendMessagePayload,
)
from application.ports.realtime import Envelope
from application.services.room_gate import RoomAction, RoomMembershipGate
from application.utils.locks import KeyedLock
from core.config import settings
from core.logging_config import get_logger
from domain.chat import DirectRoomRef, Message, Principal, room_ref
from domain.common.exceptions import (
    BusinessException,
    MessageNotFoundException,
    PersistenceException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user import User, UserRepository
from infrastructure.realtime.connection_manager import ConnectionManager


logger = get_logger(__name__)


async def resolve_users(
    users: UserRepository,
    user_ids: Iterable[str],
    principal: Optional[Principal] = None,
) -> Dict[str, User]:
    """Display metadata for ``user_ids``; the acting principal fills its own gap."""
    found = await users.get_many(user_ids)
    if principal is not None and principal.user_id not in found:
        found[principal.user_id] = User(
            id=principal.user_id, name=principal.name, profile_picture=principal.profile_picture
        )
    return found


class MessageBroadcastEngine:
    def __init__(
        self,
        *,
        uow_factory: Callable[..., AbstractUnitOfWork],
        connections: ConnectionManager,
        gate: Optional[RoomMembershipGate] = None,
        allow_attachment_only: Optional[bool] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._conn = connections
        self._gate = gate or RoomMembershipGate()
        self._allow_attachment_only = (
            settings.CHAT_ALLOW_ATTACHMENT_ONLY if allow_attachment_only is None else allow_attachment_only
        )
        self._room_locks = KeyedLock()

    async def send_message(self, principal: Principal, payload: SendMessagePayload) -> MessageDTO:
        ref = room_ref(payload.chat_type, payload.room_id)
        attachments = [a.to_entity() for a in payload.attachments]

        async with self._room_locks.hold(ref.room_id):
            try:
                async with self._uow_factory() as uow:
                    await self._gate.authorize(
                        uow.chat_repository, principal, ref.room_id, ref.chat_type, RoomAction.SEND
                    )
                    message = Message.compose(
                        sender_id=principal.user_id,
                        room=ref,
                        content=payload.content,
                        attachments=attachments,
                        allow_attachment_only=self._allow_attachment_only,
                        max_content_length=settings.CHAT_MAX_CONTENT_LENGTH,
                        max_attachments=settings.CHAT_MAX_ATTACHMENTS,
                    )
                    saved = await uow.chat_repository.create_message(message)
                    if isinstance(ref, DirectRoomRef):
                        await uow.chat_repository.update_last_message(ref.room_id, saved.id)
                    users = await resolve_users(
                        uow.user_repository, [r.user_id for r in saved.read_by], principal
                    )
            except BusinessException:
                raise
            except Exception as exc:
                logger.error(
                    "chat_message_persist_failed",
                    user_id=principal.user_id,
                    room_id=ref.room_id,
                    error=str(exc),
                    exc_info=True,
                )
                raise PersistenceException("Failed to send message", operation="send_message") from exc

            dto = MessageDTO.from_entity(saved, users)
            delivered = await self._conn.broadcast_room(
                ref.room_id,
                Envelope(type="new_message", room=ref.room_id, data=dto.to_wire()),
            )
        logger.info(
            "chat_message_sent",
            message_id=dto.id,
            user_id=principal.user_id,
            room_id=ref.room_id,
            chat_type=ref.chat_type.value,
            attachments=len(attachments),
            delivered=delivered,
        )
        return dto

    async def history(self, principal: Principal, payload: GetMessagesPayload) -> MessagesPageDTO:
        ref = room_ref(payload.chat_type, payload.room_id)
        limit = min(payload.limit or settings.CHAT_HISTORY_PAGE_SIZE, settings.CHAT_HISTORY_MAX_PAGE_SIZE)
        try:
            async with self._uow_factory(readonly=True) as uow:
                await self._gate.authorize(
                    uow.chat_repository, principal, ref.room_id, ref.chat_type, RoomAction.READ
                )
                messages = await uow.chat_repository.list_messages(ref, before=payload.before, limit=limit)
                ids = {m.sender_id for m in messages}
                ids.update(r.user_id for m in messages for r in m.read_by)
                users = await resolve_users(uow.user_repository, ids, principal)
        except BusinessException:
            raise
        except Exception as exc:
            logger.error("chat_history_failed", room_id=ref.room_id, error=str(exc), exc_info=True)
            raise PersistenceException("Failed to fetch messages", operation="list_messages") from exc
        return MessagesPageDTO(
            room_id=ref.room_id,
            chat_type=ref.chat_type.value,
            messages=[MessageDTO.from_entity(m, users) for m in messages],
        )

    async def delete_message(self, principal: Principal, message_id: str) -> Optional[MessageDeletedDTO]:
        """Soft-delete a message sent by ``principal``; None when it was already deleted."""
        try:
            async with self._uow_factory() as uow:
                message = await uow.chat_repository.get_message(message_id)
                if message is None:
                    raise MessageNotFoundException(message_id)
                if not message.soft_delete(principal.user_id):
                    return None
                await uow.chat_repository.mark_deleted(message_id)
        except BusinessException:
            raise
        except Exception as exc:
            logger.error("chat_message_delete_failed", message_id=message_id, error=str(exc), exc_info=True)
            raise PersistenceException("Failed to delete message", operation="mark_deleted") from exc

        room_id = message.room.room_id
        dto = MessageDeletedDTO(message_id=message_id, room_id=room_id)
        await self._conn.broadcast_room(room_id, Envelope(type="message_deleted", room=room_id, data=dto.to_wire()))
        logger.info("chat_message_deleted", message_id=message_id, user_id=principal.user_id, room_id=room_id)
        return dto
