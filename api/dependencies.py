"""
API依赖项 - 认证和服务装配
"""
from fastapi import Depends
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Callable, Optional

from application.services.direct_chat_service import DirectChatService
from application.services.realtime_service import ChatRealtimeService
from application.services.token_service import TokenService
from core.exceptions import UnauthorizedException
from domain.chat import Principal
from domain.common.unit_of_work import AbstractUnitOfWork

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


def get_uow_factory(conn: HTTPConnection) -> Callable[..., AbstractUnitOfWork]:
    factory = getattr(conn.app.state, "uow_factory", None)
    if factory is None:
        raise RuntimeError("Unit of work factory not initialized. Ensure lifespan sets app.state.uow_factory.")
    return factory


def get_chat_service(conn: HTTPConnection) -> ChatRealtimeService:
    svc = getattr(conn.app.state, "chat_service", None)
    if svc is None:
        raise RuntimeError("Chat service not initialized. Ensure lifespan sets app.state.chat_service.")
    return svc


async def get_token_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> TokenService:
    return TokenService(uow_factory)


async def get_direct_chat_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> DirectChatService:
    return DirectChatService(uow_factory)


async def get_current_principal(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    token_service: TokenService = Depends(get_token_service),
) -> Principal:
    """获取当前登录用户对应的 Principal"""
    if bearer_token is None or not bearer_token.credentials:
        raise UnauthorizedException("未提供认证凭据")
    return await token_service.authenticate(bearer_token.credentials)
