"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
The chat exceptions below carry the exact client-facing text in
``message``; the WebSocket dispatcher forwards it unchanged in the
scoped ``error`` event.
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class UserNotFoundException(BusinessException):
    def __init__(self, user_id: Optional[str] = None):
        details = {"user_id": user_id} if user_id else None
        super().__init__(
            code=BusinessCode.USER_NOT_FOUND,
            message="User not found",
            error_type="UserNotFound",
            details=details,
        )


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class RoomNotFoundException(BusinessException):
    def __init__(self, room_id: str, *, message: str = "Chat not found"):
        super().__init__(
            code=BusinessCode.ROOM_NOT_FOUND,
            message=message,
            error_type="RoomNotFound",
            details={"room_id": room_id},
        )


class ChatAccessDeniedException(BusinessException):
    def __init__(self, room_id: str, *, message: str):
        super().__init__(
            code=BusinessCode.CHAT_FORBIDDEN,
            message=message,
            error_type="ChatAccessDenied",
            details={"room_id": room_id},
        )


class InvalidChatTypeException(BusinessException):
    def __init__(self, chat_type: object = None):
        super().__init__(
            code=BusinessCode.INVALID_CHAT_TYPE,
            message="Invalid chat type",
            error_type="InvalidChatType",
            details={"chat_type": chat_type} if chat_type is not None else None,
            field="chatType",
        )


class MessageNotFoundException(BusinessException):
    def __init__(self, message_id: Optional[str] = None):
        super().__init__(
            code=BusinessCode.MESSAGE_NOT_FOUND,
            message="Message not found",
            error_type="MessageNotFound",
            details={"message_id": message_id} if message_id else None,
        )


class MessageDeleteForbiddenException(BusinessException):
    def __init__(self, message_id: str):
        super().__init__(
            code=BusinessCode.CHAT_FORBIDDEN,
            message="Not authorized to delete this message",
            error_type="MessageDeleteForbidden",
            details={"message_id": message_id},
        )


class PersistenceException(BusinessException):
    """Durable store call failed; the operation is not retried."""

    def __init__(self, message: str, *, operation: Optional[str] = None):
        super().__init__(
            code=BusinessCode.DATABASE_ERROR,
            message=message,
            error_type="PersistenceError",
            details={"operation": operation} if operation else None,
        )
