"""
Chat DTOs: inbound event payloads and outbound event bodies.

Wire keys are camelCase (``roomId``, ``chatType``...) while Python
attributes stay snake_case; every model accepts both on input and is
dumped ``by_alias`` on output.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer

from domain.chat import Attachment, AttachmentKind, Message
from domain.user import User


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    model_config = ConfigDict(populate_by_name=True)

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# -------------------- inbound --------------------
class InboundPayload(DTOBase):
    """Base for client event payloads; ``missing_message`` is the error text for invalid bodies."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    missing_message: ClassVar[str] = "Missing required fields"


class JoinRoomPayload(InboundPayload):
    room_id: str = Field(..., alias="roomId", min_length=1)
    chat_type: Optional[str] = Field(None, alias="chatType")

    missing_message: ClassVar[str] = "Room ID is required"


class LeaveRoomPayload(InboundPayload):
    room_id: str = Field(..., alias="roomId", min_length=1)

    missing_message: ClassVar[str] = "Room ID is required"


class AttachmentPayload(DTOBase):
    kind: AttachmentKind = Field(..., alias="type")
    url: str = Field(..., min_length=1)
    name: Optional[str] = None
    size: Optional[int] = Field(None, ge=0)

    def to_entity(self) -> Attachment:
        return Attachment(kind=self.kind, url=self.url, name=self.name, size=self.size)


class SendMessagePayload(InboundPayload):
    room_id: str = Field(..., alias="roomId", min_length=1)
    chat_type: str = Field(..., alias="chatType", min_length=1)
    content: Optional[str] = None
    attachments: list[AttachmentPayload] = Field(default_factory=list)

    @field_validator("attachments", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return [] if v is None else v


class TypingPayload(InboundPayload):
    room_id: str = Field(..., alias="roomId", min_length=1)
    is_typing: bool = Field(False, alias="isTyping")

    missing_message: ClassVar[str] = "Room ID is required"


class MarkAsReadPayload(InboundPayload):
    message_id: str = Field(..., alias="messageId", min_length=1)

    missing_message: ClassVar[str] = "Message ID is required"


class DeleteMessagePayload(InboundPayload):
    message_id: str = Field(..., alias="messageId", min_length=1)

    missing_message: ClassVar[str] = "Message ID is required"


class GetMessagesPayload(InboundPayload):
    room_id: str = Field(..., alias="roomId", min_length=1)
    chat_type: str = Field(..., alias="chatType", min_length=1)
    before: Optional[datetime] = None
    limit: Optional[int] = Field(None, ge=1)

    @field_validator("before")
    @classmethod
    def _before_as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # stored timestamps are aware UTC; a naive cursor is read as UTC
        if v is None:
            return v
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


# -------------------- outbound --------------------
class UserSummaryDTO(DTOBase):
    id: str
    name: str
    profile_picture: Optional[str] = Field(None, alias="profilePicture")

    @classmethod
    def from_user(cls, user_id: str, user: Optional[User]) -> "UserSummaryDTO":
        if user is None:
            # reader/sender no longer resolvable; keep the id so clients can still match it
            return cls(id=user_id, name="Unknown user")
        return cls(id=user_id, name=user.name, profile_picture=user.profile_picture)


class AttachmentDTO(DTOBase):
    type: str
    url: str
    name: Optional[str] = None
    size: Optional[int] = None


class ReadReceiptDTO(DTOBase):
    user: UserSummaryDTO
    read_at: datetime = Field(..., alias="readAt")


class MessageDTO(DTOBase):
    """Fully populated message as broadcast in ``new_message``."""

    id: str
    sender: UserSummaryDTO
    content: str
    chat_type: str = Field(..., alias="chatType")
    chat: str
    attachments: list[AttachmentDTO] = Field(default_factory=list)
    read_by: list[ReadReceiptDTO] = Field(default_factory=list, alias="readBy")
    is_deleted: bool = Field(False, alias="isDeleted")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @classmethod
    def from_entity(cls, message: Message, users: dict[str, User]) -> "MessageDTO":
        return cls(
            id=message.id or "",
            sender=UserSummaryDTO.from_user(message.sender_id, users.get(message.sender_id)),
            content=message.content,
            chat_type=message.room.chat_type.value,
            chat=message.room.room_id,
            attachments=[
                AttachmentDTO(type=a.kind.value, url=a.url, name=a.name, size=a.size)
                for a in message.attachments
            ],
            read_by=[
                ReadReceiptDTO(user=UserSummaryDTO.from_user(r.user_id, users.get(r.user_id)), read_at=r.read_at)
                for r in message.read_by
            ],
            is_deleted=message.is_deleted,
            created_at=message.created_at,
            updated_at=message.updated_at,
        )


class MessageReadDTO(DTOBase):
    message_id: str = Field(..., alias="messageId")
    user_id: str = Field(..., alias="userId")
    read_at: datetime = Field(..., alias="readAt")


class MessageDeletedDTO(DTOBase):
    message_id: str = Field(..., alias="messageId")
    room_id: str = Field(..., alias="roomId")


class MessagesPageDTO(DTOBase):
    room_id: str = Field(..., alias="roomId")
    chat_type: str = Field(..., alias="chatType")
    messages: list[MessageDTO] = Field(default_factory=list)


class UserTypingDTO(DTOBase):
    user_id: str = Field(..., alias="userId")
    user_name: str = Field(..., alias="userName")
    is_typing: bool = Field(..., alias="isTyping")


class RoomMemberEventDTO(DTOBase):
    user_id: str = Field(..., alias="userId")
    user_name: str = Field(..., alias="userName")


class PresenceDTO(DTOBase):
    online_users: list[str] = Field(default_factory=list, alias="onlineUsers")


class ErrorDTO(DTOBase):
    message: str
    code: Optional[int] = None


class CreateDirectChatDTO(DTOBase):
    participant_id: str = Field(..., alias="participantId", min_length=1)


class DirectRoomDTO(DTOBase):
    id: str
    participants: list[str]
    last_message: Optional[str] = Field(None, alias="lastMessage")
    is_active: bool = Field(True, alias="isActive")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
