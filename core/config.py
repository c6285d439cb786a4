"""
配置文件 - 项目配置管理
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from pydantic import model_validator


class DatabaseSettings(BaseModel):
    url: str = "sqlite+aiosqlite:///./chat.db"
    echo: bool = False


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(default="Forge Chat Realtime Service")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=True)
    ENVIRONMENT: str = Field(default="development")

    # 分组配置：数据库采用嵌套模型（DATABASE__URL）
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    # 持久化后端: sqlalchemy | memory
    PERSISTENCE_BACKEND: str = Field(default="sqlalchemy")

    # 安全配置
    SECRET_KEY: Optional[str] = Field(
        default=None,
        description="JWT签名密钥，生产环境必须设置"
    )
    ALGORITHM: str = Field(default="HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=30)  # 30分钟

    # CORS配置
    CORS_ORIGINS: list = Field(
        default=["http://localhost:5173", "http://localhost:3000"],
    )

    # 日志/请求体记录配置
    LOG_REQUEST_BODY_ENABLE_BY_DEFAULT: bool = Field(default=True)
    LOG_REQUEST_BODY_MAX_BYTES: int = Field(default=2048)
    LOG_LEVEL: Optional[str] = Field(default=None, description="覆盖根日志级别；为空时按 DEBUG 推断")
    # 单个日志字段的最大字符数，防止错误信息里夹带整段聊天内容
    LOG_VALUE_MAX_CHARS: int = Field(default=512)

    # Realtime/WebSocket 配置
    REALTIME_WS_SEND_QUEUE_MAX: int = Field(default=100)
    REALTIME_WS_SEND_OVERFLOW_POLICY: str = Field(
        default="drop_oldest",
        description="队列溢出策略: drop_oldest | drop_new | disconnect"
    )
    REALTIME_WS_HANDSHAKE_TIMEOUT_S: float = Field(default=10.0)
    REALTIME_WS_IDLE_PING_INTERVAL_S: float = Field(default=30.0)
    REALTIME_WS_PONG_GRACE_S: float = Field(default=10.0)
    REALTIME_WS_MISSED_PING_LIMIT: int = Field(default=2)

    # 聊天消息配置
    CHAT_ALLOW_ATTACHMENT_ONLY: bool = Field(
        default=True,
        description="是否允许只有附件、没有文本的消息"
    )
    CHAT_MAX_CONTENT_LENGTH: int = Field(default=4000)
    CHAT_MAX_ATTACHMENTS: int = Field(default=10)
    CHAT_HISTORY_PAGE_SIZE: int = Field(default=50)
    CHAT_HISTORY_MAX_PAGE_SIZE: int = Field(default=200)

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @model_validator(mode="after")
    def _validate_secret_key(self):
        # 所有环境均要求显式配置 SECRET_KEY，避免重启导致 Token 失效
        if not self.SECRET_KEY:
            raise ValueError(
                "SECRET_KEY 未配置。请在环境变量或 .env 中设置 SECRET_KEY"
            )
        return self

    @field_validator("PERSISTENCE_BACKEND")
    @classmethod
    def _validate_backend(cls, v: str) -> str:
        v = (v or "sqlalchemy").strip().lower()
        if v not in {"sqlalchemy", "memory"}:
            raise ValueError("PERSISTENCE_BACKEND 只能是 sqlalchemy 或 memory")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def _validate_log_level(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip().upper()
        if v not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError("LOG_LEVEL 只能是 CRITICAL/ERROR/WARNING/INFO/DEBUG")
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """允许 JSON 字符串或逗号分隔字符串两种格式。"""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                import json
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return arr
                except ValueError:
                    pass
            if "," in s:
                return [item.strip() for item in s.split(",") if item.strip()]
            return [s]
        return v


settings = Settings()
