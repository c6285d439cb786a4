"""
Request ID 中间件
为 HTTP 请求与 WebSocket 会话生成或透传追踪ID，并通过 contextvars 传递给日志系统
"""
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send


# 定义context变量，用于在请求/会话生命周期内共享request_id
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)


class RequestIDMiddleware:
    """
    Request ID 追踪中间件（纯 ASGI，同时覆盖 http 与 websocket）

    1. 从请求头获取或生成新的request_id
    2. 写入 scope["state"] 与 contextvars，供异常处理器和日志系统使用
    3. HTTP 响应头中返回request_id

    BaseHTTPMiddleware 不处理 websocket，这里直接实现 ASGI 接口。
    """

    HEADER_NAME = "X-Request-ID"

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        request_id = headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = self._get_client_ip(scope, headers)

        state = scope.setdefault("state", {})
        state["request_id"] = request_id
        state["client_ip"] = client_ip

        request_id_var.set(request_id)
        client_ip_var.set(client_ip)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            channel=scope["type"],
            path=scope.get("path", ""),
        )

        if scope["type"] == "websocket":
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[self.HEADER_NAME] = request_id
            await send(message)

        await self.app(scope, receive, send_wrapper)

    @staticmethod
    def _get_client_ip(scope: Scope, headers: Headers) -> str:
        # 尝试从X-Forwarded-For获取（考虑代理的情况），取第一个IP
        x_forwarded_for = headers.get("X-Forwarded-For")
        if x_forwarded_for:
            return x_forwarded_for.split(",")[0].strip()
        client_ip = headers.get("X-Real-IP")
        if client_ip:
            return client_ip
        client = scope.get("client")
        return client[0] if client else "unknown"


def get_request_id() -> Optional[str]:
    """获取当前请求的request_id，不在请求上下文中则返回None"""
    return request_id_var.get()


def get_client_ip() -> Optional[str]:
    return client_ip_var.get()
