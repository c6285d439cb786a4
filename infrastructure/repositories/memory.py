"""In-memory implementations of the chat and user repositories.

Single-process only. Useful for local dev and tests.

Writes are journaled on the owning unit of work and applied on commit,
so a failed use-case leaves the store untouched. Reads always see the
committed store; entities are deep-copied in and out so callers never
share state with it.
"""
from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from domain.chat import (
    ChatRepository,
    DirectRoom,
    DirectRoomRef,
    GroupRoom,
    GroupRoomRef,
    Message,
    ReadReceipt,
    Room,
    RoomRef,
)
from domain.common.exceptions import InvalidChatTypeException, MessageNotFoundException
from domain.user import User, UserRepository


Journal = List[Callable[[], None]]


@dataclass
class InMemoryChatStore:
    users: Dict[str, User] = field(default_factory=dict)
    direct_rooms: Dict[str, DirectRoom] = field(default_factory=dict)
    groups: Dict[str, GroupRoom] = field(default_factory=dict)
    messages: Dict[str, Message] = field(default_factory=dict)


class InMemoryUserRepository(UserRepository):
    def __init__(self, store: InMemoryChatStore, journal: Journal) -> None:
        self._store = store
        self._journal = journal

    async def create(self, user: User) -> User:  # type: ignore[override]
        saved = copy.deepcopy(user)
        saved.id = saved.id or uuid.uuid4().hex
        saved.created_at = saved.created_at or datetime.now(timezone.utc)
        self._journal.append(lambda: self._store.users.__setitem__(saved.id, saved))
        return copy.deepcopy(saved)

    async def get_by_id(self, user_id: str) -> Optional[User]:  # type: ignore[override]
        user = self._store.users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, User]:  # type: ignore[override]
        return {
            uid: copy.deepcopy(self._store.users[uid])
            for uid in set(user_ids)
            if uid in self._store.users
        }


class InMemoryChatRepository(ChatRepository):
    def __init__(self, store: InMemoryChatStore, journal: Journal) -> None:
        self._store = store
        self._journal = journal

    async def find_room(self, ref: RoomRef) -> Optional[Room]:  # type: ignore[override]
        if isinstance(ref, DirectRoomRef):
            room: Optional[Room] = self._store.direct_rooms.get(ref.room_id)
        elif isinstance(ref, GroupRoomRef):
            room = self._store.groups.get(ref.room_id)
        else:
            raise InvalidChatTypeException(type(ref).__name__)
        return copy.deepcopy(room) if room else None

    async def locate_room(self, room_id: str) -> Optional[Room]:  # type: ignore[override]
        room = self._store.direct_rooms.get(room_id) or self._store.groups.get(room_id)
        return copy.deepcopy(room) if room else None

    async def create_direct_room(self, room: DirectRoom) -> DirectRoom:  # type: ignore[override]
        saved = copy.deepcopy(room)
        saved.id = saved.id or uuid.uuid4().hex
        now = datetime.now(timezone.utc)
        saved.created_at = saved.created_at or now
        saved.updated_at = saved.updated_at or now
        self._journal.append(lambda: self._store.direct_rooms.__setitem__(saved.id, saved))
        return copy.deepcopy(saved)

    async def find_direct_room_between(self, user_a: str, user_b: str) -> Optional[DirectRoom]:  # type: ignore[override]
        pair = {user_a, user_b}
        for room in self._store.direct_rooms.values():
            if set(room.participants) == pair:
                return copy.deepcopy(room)
        return None

    async def create_group_room(self, room: GroupRoom) -> GroupRoom:  # type: ignore[override]
        saved = copy.deepcopy(room)
        saved.id = saved.id or uuid.uuid4().hex
        now = datetime.now(timezone.utc)
        saved.created_at = saved.created_at or now
        saved.updated_at = saved.updated_at or now
        self._journal.append(lambda: self._store.groups.__setitem__(saved.id, saved))
        return copy.deepcopy(saved)

    async def update_last_message(self, room_id: str, message_id: str) -> None:  # type: ignore[override]
        def _apply() -> None:
            room = self._store.direct_rooms.get(room_id)
            if room is not None:
                room.set_last_message(message_id)

        self._journal.append(_apply)

    async def create_message(self, message: Message) -> Message:  # type: ignore[override]
        saved = copy.deepcopy(message)
        saved.id = saved.id or uuid.uuid4().hex
        self._journal.append(lambda: self._store.messages.__setitem__(saved.id, saved))
        return copy.deepcopy(saved)

    async def get_message(self, message_id: str) -> Optional[Message]:  # type: ignore[override]
        msg = self._store.messages.get(message_id)
        return copy.deepcopy(msg) if msg else None

    async def append_read_receipt(self, message_id: str, receipt: ReadReceipt) -> bool:  # type: ignore[override]
        msg = self._store.messages.get(message_id)
        if msg is None:
            raise MessageNotFoundException(message_id)
        if msg.has_read(receipt.user_id):
            return False

        def _apply() -> None:
            target = self._store.messages[message_id]
            # re-check at commit time, another unit of work may have won
            if not target.has_read(receipt.user_id):
                target.read_by.append(receipt)

        self._journal.append(_apply)
        return True

    async def mark_deleted(self, message_id: str) -> None:  # type: ignore[override]
        if message_id not in self._store.messages:
            raise MessageNotFoundException(message_id)

        def _apply() -> None:
            target = self._store.messages[message_id]
            target.is_deleted = True
            target.updated_at = datetime.now(timezone.utc)

        self._journal.append(_apply)

    async def list_messages(
        self,
        ref: RoomRef,
        *,
        before: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[Message]:  # type: ignore[override]
        items = [
            m for m in self._store.messages.values()
            if m.room == ref and not m.is_deleted and (before is None or m.created_at < before)
        ]
        # dict preserves insertion (commit) order, which breaks created_at ties
        items.sort(key=lambda m: m.created_at)
        return [copy.deepcopy(m) for m in items[-limit:]] if limit > 0 else []
