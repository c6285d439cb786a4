
from .request_id import RequestIDMiddleware, get_request_id, get_client_ip
from .logging import LoggingMiddleware, WebSocketSessionLogMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "WebSocketSessionLogMiddleware",
    "get_request_id",
    "get_client_ip",
]
