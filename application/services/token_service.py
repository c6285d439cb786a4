"""
令牌服务 - 校验访问令牌并解析出连接主体（Principal）
"""
from typing import Optional, Callable
from datetime import datetime, timedelta, timezone
import jwt
import uuid

from domain.chat import Principal
from domain.common.unit_of_work import AbstractUnitOfWork
from core.config import settings
from core.exceptions import UnauthorizedException, TokenExpiredException
from core.logging_config import get_logger


logger = get_logger(__name__)


class TokenService:
    """
    令牌服务

    Access tokens are issued by the platform's auth service; this class
    verifies them and resolves the subject to a Principal. ``create_access_token``
    exists for local tooling and tests.
    """

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    def create_access_token(self, user_id: str, *, name: Optional[str] = None,
                            expires_minutes: Optional[int] = None) -> str:
        """创建访问令牌"""
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )
        to_encode = {
            "sub": str(user_id),
            "exp": expire,
            "type": "access",
            "jti": str(uuid.uuid4()),
        }
        if name:
            to_encode["name"] = name
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    def verify_access_token(self, token: str) -> Optional[str]:
        """Verify an access JWT and return the user id.

        - Expired token: raise TokenExpiredException
        - Invalid token or wrong type: return None
        """
        try:
            payload = jwt.decode(
                token,
                settings.SECRET_KEY,
                algorithms=[settings.ALGORITHM],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredException()
        except jwt.InvalidTokenError:
            return None

        if payload.get("type") != "access":
            return None

        user_id = payload.get("sub")
        if not user_id:
            return None
        return str(user_id)

    async def authenticate(self, token: Optional[str]) -> Principal:
        """Resolve a bearer token to the principal of a connection or request."""
        if not token:
            raise UnauthorizedException("Authentication token is required")
        user_id = self.verify_access_token(token)
        if user_id is None:
            logger.info("auth_token_invalid")
            raise UnauthorizedException("Invalid authentication token")

        async with self._uow_factory(readonly=True) as uow:
            user = await uow.user_repository.get_by_id(user_id)
        if user is None or not user.is_active:
            logger.info("auth_user_rejected", user_id=user_id, found=user is not None)
            raise UnauthorizedException("User not found or inactive")
        return Principal(user_id=user_id, name=user.name, profile_picture=user.profile_picture)
