"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .chat import (
    DirectChatModel,
    GroupModel,
    GroupMemberModel,
    MessageModel,
    MessageReadModel,
)

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "DirectChatModel",
    "GroupModel",
    "GroupMemberModel",
    "MessageModel",
    "MessageReadModel",
]
