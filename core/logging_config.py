"""
Structlog 日志配置模块

HTTP 请求与 WebSocket 会话共用一条处理链：
- request_id/client_ip 由 RequestIDMiddleware 绑定到 contextvars
- 会话建立后通过 bind_log_context 追加 user_id，使该连接后续日志都带上用户
"""
import logging
import json
import structlog
from structlog.processors import TimeStamper, add_log_level, JSONRenderer
from structlog.dev import ConsoleRenderer
from structlog.contextvars import bind_contextvars, merge_contextvars
from structlog.stdlib import ProcessorFormatter
from typing import Any, List, MutableMapping

from core.config import settings


# 连接层的第三方库在 INFO 下会逐帧输出
_NOISY_LOGGERS = ("websockets", "uvicorn.protocols")


class TruncateLongValues:
    """截断过长的字符串字段（错误信息可能夹带消息正文）。"""

    def __init__(self, max_chars: int):
        self.max_chars = max_chars

    def __call__(self, logger: Any, method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
        if self.max_chars <= 0:
            return event_dict
        for key, value in event_dict.items():
            if key != "event" and isinstance(value, str) and len(value) > self.max_chars:
                event_dict[key] = f"{value[:self.max_chars]}...(+{len(value) - self.max_chars} chars)"
        return event_dict


def get_renderer() -> Any:
    """根据环境选择渲染器 (Console in DEBUG, JSON otherwise).
    注意：structlog 会向 serializer 传入 default/sort_keys 等参数，需要适配。
    """
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)

    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)
    return JSONRenderer(serializer=_dumps)


def _root_level() -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL)
    return logging.DEBUG if settings.DEBUG else logging.INFO


def configure_logging() -> None:
    """配置 structlog 并桥接标准库 logging 到同一处理链。"""
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        # 在渲染异常堆栈之前截断，traceback 保持完整
        TruncateLongValues(settings.LOG_VALUE_MAX_CHARS),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            *shared_pre_chain,
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[
            ProcessorFormatter.remove_processors_meta,
            get_renderer(),
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_root_level())
    # SQL echo 由 DATABASE__ECHO 单独控制，避免 DEBUG 下刷屏
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_log_context(**values: Any) -> None:
    """向当前请求/会话的日志上下文追加字段（如 user_id）。"""
    bind_contextvars(**values)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取 structlog logger 实例。"""
    return structlog.get_logger(name)
