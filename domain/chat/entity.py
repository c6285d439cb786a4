"""
Chat domain entities: rooms, messages, read receipts and the principal
bound to a realtime connection.

A message references exactly one room. The room reference is a tagged
union (``DirectRoomRef`` | ``GroupRoomRef``) so lookups dispatch on the
type instead of on a free-form kind string.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Iterable, Optional, Union

from domain.common.exceptions import (
    DomainValidationException,
    InvalidChatTypeException,
    MessageDeleteForbiddenException,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class ChatType(str, Enum):
    DIRECT = "direct"
    GROUP = "group"

    @classmethod
    def parse(cls, value: object) -> "ChatType":
        """Parse a wire value, raising ``InvalidChatTypeException`` on anything unknown."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidChatTypeException(value)


@dataclass(frozen=True)
class Principal:
    """Authenticated identity attached to one connection."""

    user_id: str
    name: str
    profile_picture: Optional[str] = None


@dataclass(frozen=True)
class DirectRoomRef:
    room_id: str
    chat_type: ClassVar[ChatType] = ChatType.DIRECT


@dataclass(frozen=True)
class GroupRoomRef:
    room_id: str
    chat_type: ClassVar[ChatType] = ChatType.GROUP


RoomRef = Union[DirectRoomRef, GroupRoomRef]


def room_ref(chat_type: object, room_id: str) -> RoomRef:
    kind = ChatType.parse(chat_type)
    if kind is ChatType.DIRECT:
        return DirectRoomRef(room_id)
    return GroupRoomRef(room_id)


class GroupRole(str, Enum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    MEMBER = "member"


@dataclass
class GroupMember:
    user_id: str
    role: GroupRole = GroupRole.MEMBER
    joined_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.role = GroupRole(self.role)
        self.joined_at = _ensure_utc(self.joined_at)


@dataclass
class DirectRoom:
    """Two-party conversation. Exactly two distinct participants."""

    id: Optional[str]
    participants: list[str]
    last_message_id: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.participants = list(self.participants)
        if len(self.participants) != 2 or len(set(self.participants)) != 2:
            raise DomainValidationException(
                "Direct chat must have exactly 2 participants",
                field="participants",
                details={"participants": self.participants},
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def ref(self) -> DirectRoomRef:
        return DirectRoomRef(self.id or "")

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def set_last_message(self, message_id: str) -> None:
        self.last_message_id = message_id
        self.updated_at = _utcnow()


@dataclass
class GroupRoom:
    """N-party room; any member regardless of role may chat."""

    id: Optional[str]
    name: str
    members: list[GroupMember] = field(default_factory=list)
    description: Optional[str] = None
    is_private: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def ref(self) -> GroupRoomRef:
        return GroupRoomRef(self.id or "")

    def is_member(self, user_id: str) -> bool:
        return any(m.user_id == user_id for m in self.members)

    def role_of(self, user_id: str) -> Optional[GroupRole]:
        for m in self.members:
            if m.user_id == user_id:
                return m.role
        return None


Room = Union[DirectRoom, GroupRoom]


class AttachmentKind(str, Enum):
    IMAGE = "image"
    FILE = "file"
    LINK = "link"


@dataclass
class Attachment:
    kind: AttachmentKind
    url: str
    name: Optional[str] = None
    size: Optional[int] = None

    def __post_init__(self) -> None:
        try:
            self.kind = AttachmentKind(self.kind)
        except ValueError:
            raise DomainValidationException(
                f"Invalid attachment type: {self.kind}",
                field="attachments",
                details={"allowed": [k.value for k in AttachmentKind]},
            )
        if not self.url:
            raise DomainValidationException("Attachment url is required", field="attachments")
        if self.size is not None and self.size < 0:
            raise DomainValidationException("Attachment size must be non-negative", field="attachments")


@dataclass(frozen=True)
class ReadReceipt:
    user_id: str
    read_at: datetime


@dataclass
class Message:
    """Chat message aggregate. Mutated only by read receipts and soft delete."""

    id: Optional[str]
    sender_id: str
    room: RoomRef
    content: str = ""
    attachments: list[Attachment] = field(default_factory=list)
    read_by: list[ReadReceipt] = field(default_factory=list)
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @classmethod
    def compose(
        cls,
        *,
        sender_id: str,
        room: RoomRef,
        content: Optional[str],
        attachments: Iterable[Attachment] = (),
        allow_attachment_only: bool = True,
        max_content_length: Optional[int] = None,
        max_attachments: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> "Message":
        """Build a new, not yet persisted message.

        The sender is recorded as the first reader, stamped with the send time.
        """
        ts = _ensure_utc(now) or _utcnow()
        text = (content or "").strip()
        items = list(attachments)
        if not text:
            if not items:
                raise DomainValidationException(
                    "Message must contain text or at least one attachment", field="content"
                )
            if not allow_attachment_only:
                raise DomainValidationException("Message content is required", field="content")
        if max_content_length is not None and len(text) > max_content_length:
            raise DomainValidationException(
                "Message content is too long",
                field="content",
                details={"max": max_content_length},
            )
        if max_attachments is not None and len(items) > max_attachments:
            raise DomainValidationException(
                "Too many attachments",
                field="attachments",
                details={"max": max_attachments},
            )
        return cls(
            id=None,
            sender_id=sender_id,
            room=room,
            content=text,
            attachments=items,
            read_by=[ReadReceipt(user_id=sender_id, read_at=ts)],
            created_at=ts,
            updated_at=ts,
        )

    def has_read(self, user_id: str) -> bool:
        return any(r.user_id == user_id for r in self.read_by)

    def mark_read(self, user_id: str, *, at: Optional[datetime] = None) -> Optional[ReadReceipt]:
        """Append a receipt for ``user_id``; return None when already read."""
        if self.has_read(user_id):
            return None
        receipt = ReadReceipt(user_id=user_id, read_at=_ensure_utc(at) or _utcnow())
        self.read_by.append(receipt)
        return receipt

    def soft_delete(self, by_user_id: str) -> bool:
        if by_user_id != self.sender_id:
            raise MessageDeleteForbiddenException(self.id or "")
        if self.is_deleted:
            return False
        self.is_deleted = True
        self.updated_at = _utcnow()
        return True
