"""Chat room and message database model definitions."""
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DirectChatModel(Base):
    """ORM mapping for direct_chats; participants stored as a sorted pair."""

    __tablename__ = "direct_chats"
    __table_args__ = (
        UniqueConstraint("participant_low", "participant_high", name="uq_direct_chats_pair"),
        {"comment": "一对一私聊房间"},
    )

    id = Column(String(36), primary_key=True, comment="房间ID")
    participant_low = Column(String(36), nullable=False, index=True, comment="参与者（字典序较小）")
    participant_high = Column(String(36), nullable=False, index=True, comment="参与者（字典序较大）")
    last_message_id = Column(String(36), nullable=True, comment="最后一条消息ID")
    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
        comment="是否有效",
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        comment="更新时间",
    )

    def __repr__(self) -> str:
        return f"<DirectChatModel(id={self.id}, pair=({self.participant_low}, {self.participant_high}))>"


class GroupModel(Base):
    """ORM mapping for chat_groups."""

    __tablename__ = "chat_groups"
    __table_args__ = ({"comment": "群组房间"},)

    id = Column(String(36), primary_key=True, comment="群组ID")
    name = Column(String(200), nullable=False, comment="群组名称")
    description = Column(Text, nullable=True, comment="群组描述")
    is_private = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        comment="是否私有",
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        comment="更新时间",
    )


class GroupMemberModel(Base):
    """ORM mapping for chat_group_members."""

    __tablename__ = "chat_group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_user"),
        {"comment": "群组成员及角色"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(
        String(36),
        ForeignKey("chat_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(36), nullable=False, index=True)
    role = Column(
        String(16),
        nullable=False,
        default="member",
        server_default=text("'member'"),
        comment="角色：admin/moderator/member",
    )
    joined_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MessageModel(Base):
    """ORM mapping for chat_messages; ``chat_type`` tags which room table ``chat_id`` points to."""

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_room_created", "chat_type", "chat_id", "created_at"),
        {"comment": "聊天消息（私聊与群聊共用）"},
    )

    id = Column(String(36), primary_key=True, comment="消息ID")
    sender_id = Column(String(36), nullable=False, index=True, comment="发送者ID")
    chat_type = Column(String(16), nullable=False, comment="房间类型：direct/group")
    chat_id = Column(String(36), nullable=False, comment="房间ID")
    content = Column(Text, nullable=False, default="", comment="文本内容")
    attachments = Column(JSON, nullable=False, default=list, comment="附件列表（JSON）")
    is_deleted = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        comment="软删除标记",
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        comment="更新时间",
    )


class MessageReadModel(Base):
    """One row per (message, reader)."""

    __tablename__ = "chat_message_reads"
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_reads_reader"),
        {"comment": "消息已读回执"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(
        String(36),
        ForeignKey("chat_messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(36), nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
