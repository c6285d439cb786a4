"""
聊天仓储接口 - 定义实时消息层所需的持久化能力
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import DirectRoom, GroupRoom, Message, ReadReceipt, Room, RoomRef


class ChatRepository(ABC):
    """Rooms and messages as seen by the realtime core.

    Membership is read-only here; the only room mutation is the
    last-message pointer on direct rooms.
    """

    @abstractmethod
    async def find_room(self, ref: RoomRef) -> Optional[Room]:
        """Resolve a room of the kind named by ``ref``."""

    @abstractmethod
    async def locate_room(self, room_id: str) -> Optional[Room]:
        """Resolve a room by id regardless of kind."""

    @abstractmethod
    async def create_message(self, message: Message) -> Message:
        """Persist a new message and return it with id assigned."""

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[Message]:
        pass

    @abstractmethod
    async def append_read_receipt(self, message_id: str, receipt: ReadReceipt) -> bool:
        """Store a receipt; False when the reader already has one."""

    @abstractmethod
    async def update_last_message(self, room_id: str, message_id: str) -> None:
        pass

    @abstractmethod
    async def mark_deleted(self, message_id: str) -> None:
        pass

    @abstractmethod
    async def list_messages(
        self,
        ref: RoomRef,
        *,
        before: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[Message]:
        """Non-deleted messages of a room, oldest first."""

    @abstractmethod
    async def create_direct_room(self, room: DirectRoom) -> DirectRoom:
        pass

    @abstractmethod
    async def find_direct_room_between(self, user_a: str, user_b: str) -> Optional[DirectRoom]:
        pass

    @abstractmethod
    async def create_group_room(self, room: GroupRoom) -> GroupRoom:
        pass
