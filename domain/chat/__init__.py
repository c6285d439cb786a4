"""Chat domain package exports."""
from .entity import (
    Attachment,
    AttachmentKind,
    ChatType,
    DirectRoom,
    DirectRoomRef,
    GroupMember,
    GroupRole,
    GroupRoom,
    GroupRoomRef,
    Message,
    Principal,
    ReadReceipt,
    Room,
    RoomRef,
    room_ref,
)
from .repository import ChatRepository

__all__ = [
    "Attachment",
    "AttachmentKind",
    "ChatType",
    "DirectRoom",
    "DirectRoomRef",
    "GroupMember",
    "GroupRole",
    "GroupRoom",
    "GroupRoomRef",
    "Message",
    "Principal",
    "ReadReceipt",
    "Room",
    "RoomRef",
    "room_ref",
    "ChatRepository",
]
