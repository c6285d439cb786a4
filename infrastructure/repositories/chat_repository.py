"""SQLAlchemy-backed repository for chat rooms and messages."""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional
import uuid

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.chat import (
    Attachment,
    ChatRepository,
    DirectRoom,
    DirectRoomRef,
    GroupMember,
    GroupRoom,
    GroupRoomRef,
    Message,
    ReadReceipt,
    Room,
    RoomRef,
    room_ref,
)
from domain.common.exceptions import InvalidChatTypeException, MessageNotFoundException
from infrastructure.models.chat import (
    DirectChatModel,
    GroupMemberModel,
    GroupModel,
    MessageModel,
    MessageReadModel,
)


def _new_id() -> str:
    return uuid.uuid4().hex


class SQLAlchemyChatRepository(ChatRepository):
    """Persist rooms and messages using SQLAlchemy ORM."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # -------------------- mapping --------------------
    @staticmethod
    def _direct_to_entity(model: DirectChatModel) -> DirectRoom:
        return DirectRoom(
            id=model.id,
            participants=[model.participant_low, model.participant_high],
            last_message_id=model.last_message_id,
            is_active=model.is_active,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _group_to_entity(model: GroupModel, members: List[GroupMemberModel]) -> GroupRoom:
        return GroupRoom(
            id=model.id,
            name=model.name,
            description=model.description,
            is_private=model.is_private,
            members=[GroupMember(user_id=m.user_id, role=m.role, joined_at=m.joined_at) for m in members],
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _message_to_entity(model: MessageModel, reads: List[MessageReadModel]) -> Message:
        return Message(
            id=model.id,
            sender_id=model.sender_id,
            room=room_ref(model.chat_type, model.chat_id),
            content=model.content or "",
            attachments=[
                Attachment(kind=a["kind"], url=a["url"], name=a.get("name"), size=a.get("size"))
                for a in (model.attachments or [])
            ],
            read_by=[ReadReceipt(user_id=r.user_id, read_at=_as_utc(r.read_at)) for r in reads],
            is_deleted=model.is_deleted,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def _reads_for(self, message_ids: List[str]) -> Dict[str, List[MessageReadModel]]:
        grouped: Dict[str, List[MessageReadModel]] = defaultdict(list)
        if not message_ids:
            return grouped
        result = await self.session.execute(
            select(MessageReadModel)
            .where(MessageReadModel.message_id.in_(message_ids))
            .order_by(MessageReadModel.read_at, MessageReadModel.id)
        )
        for r in result.scalars().all():
            grouped[r.message_id].append(r)
        return grouped

    # -------------------- rooms --------------------
    async def _get_direct(self, room_id: str) -> Optional[DirectRoom]:
        result = await self.session.execute(
            select(DirectChatModel).where(DirectChatModel.id == room_id)
        )
        model = result.scalar_one_or_none()
        return self._direct_to_entity(model) if model else None

    async def _get_group(self, room_id: str) -> Optional[GroupRoom]:
        result = await self.session.execute(select(GroupModel).where(GroupModel.id == room_id))
        model = result.scalar_one_or_none()
        if model is None:
            return None
        members = await self.session.execute(
            select(GroupMemberModel).where(GroupMemberModel.group_id == room_id)
        )
        return self._group_to_entity(model, list(members.scalars().all()))

    async def find_room(self, ref: RoomRef) -> Optional[Room]:
        if isinstance(ref, DirectRoomRef):
            return await self._get_direct(ref.room_id)
        if isinstance(ref, GroupRoomRef):
            return await self._get_group(ref.room_id)
        raise InvalidChatTypeException(type(ref).__name__)

    async def locate_room(self, room_id: str) -> Optional[Room]:
        room = await self._get_direct(room_id)
        if room is not None:
            return room
        return await self._get_group(room_id)

    async def create_direct_room(self, room: DirectRoom) -> DirectRoom:
        low, high = sorted(room.participants)
        model = DirectChatModel(
            id=room.id or _new_id(),
            participant_low=low,
            participant_high=high,
            last_message_id=room.last_message_id,
            is_active=room.is_active,
        )
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._direct_to_entity(model)

    async def find_direct_room_between(self, user_a: str, user_b: str) -> Optional[DirectRoom]:
        low, high = sorted((user_a, user_b))
        result = await self.session.execute(
            select(DirectChatModel).where(
                and_(DirectChatModel.participant_low == low, DirectChatModel.participant_high == high)
            )
        )
        model = result.scalar_one_or_none()
        return self._direct_to_entity(model) if model else None

    async def create_group_room(self, room: GroupRoom) -> GroupRoom:
        model = GroupModel(
            id=room.id or _new_id(),
            name=room.name,
            description=room.description,
            is_private=room.is_private,
        )
        self.session.add(model)
        await self.session.flush()
        for m in room.members:
            self.session.add(
                GroupMemberModel(
                    group_id=model.id,
                    user_id=m.user_id,
                    role=m.role.value,
                    joined_at=m.joined_at or datetime.now(timezone.utc),
                )
            )
        await self.session.flush()
        found = await self._get_group(model.id)
        assert found is not None
        return found

    async def update_last_message(self, room_id: str, message_id: str) -> None:
        await self.session.execute(
            update(DirectChatModel)
            .where(DirectChatModel.id == room_id)
            .values(last_message_id=message_id, updated_at=datetime.now(timezone.utc))
        )

    # -------------------- messages --------------------
    async def create_message(self, message: Message) -> Message:
        model = MessageModel(
            id=message.id or _new_id(),
            sender_id=message.sender_id,
            chat_type=message.room.chat_type.value,
            chat_id=message.room.room_id,
            content=message.content,
            attachments=[
                {"kind": a.kind.value, "url": a.url, "name": a.name, "size": a.size}
                for a in message.attachments
            ],
            is_deleted=message.is_deleted,
            created_at=message.created_at,
            updated_at=message.updated_at,
        )
        self.session.add(model)
        await self.session.flush()
        for r in message.read_by:
            self.session.add(MessageReadModel(message_id=model.id, user_id=r.user_id, read_at=r.read_at))
        await self.session.flush()
        await self.session.refresh(model)
        reads = await self._reads_for([model.id])
        return self._message_to_entity(model, reads.get(model.id, []))

    async def get_message(self, message_id: str) -> Optional[Message]:
        result = await self.session.execute(select(MessageModel).where(MessageModel.id == message_id))
        model = result.scalar_one_or_none()
        if model is None:
            return None
        reads = await self._reads_for([model.id])
        return self._message_to_entity(model, reads.get(model.id, []))

    async def append_read_receipt(self, message_id: str, receipt: ReadReceipt) -> bool:
        existing = await self.session.execute(
            select(MessageReadModel.id).where(
                and_(MessageReadModel.message_id == message_id, MessageReadModel.user_id == receipt.user_id)
            )
        )
        if existing.first() is not None:
            return False
        # savepoint: a concurrent insert of the same reader loses on the unique constraint
        try:
            async with self.session.begin_nested():
                self.session.add(
                    MessageReadModel(message_id=message_id, user_id=receipt.user_id, read_at=receipt.read_at)
                )
        except IntegrityError:
            return False
        return True

    async def mark_deleted(self, message_id: str) -> None:
        result = await self.session.execute(
            update(MessageModel)
            .where(MessageModel.id == message_id)
            .values(is_deleted=True, updated_at=datetime.now(timezone.utc))
        )
        if result.rowcount == 0:
            raise MessageNotFoundException(message_id)

    async def list_messages(
        self,
        ref: RoomRef,
        *,
        before: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[Message]:
        query = select(MessageModel).where(
            and_(
                MessageModel.chat_type == ref.chat_type.value,
                MessageModel.chat_id == ref.room_id,
                MessageModel.is_deleted.is_(False),
            )
        )
        if before is not None:
            query = query.where(MessageModel.created_at < before)
        query = query.order_by(MessageModel.created_at.desc(), MessageModel.id.desc()).limit(limit)
        result = await self.session.execute(query)
        models = list(reversed(result.scalars().all()))
        reads = await self._reads_for([m.id for m in models])
        return [self._message_to_entity(m, reads.get(m.id, [])) for m in models]


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
