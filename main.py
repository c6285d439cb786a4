"""
FastAPI应用主入口
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from api.routes import chat as chat_routes
from api.routes import ws as ws_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware, WebSocketSessionLogMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from application.services.realtime_service import ChatRealtimeService
from infrastructure.realtime.connection_manager import ConnectionManager
from infrastructure.realtime.presence import PresenceRegistry
from infrastructure.repositories.memory import InMemoryChatStore
from infrastructure.unit_of_work import build_uow_factory


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    if settings.PERSISTENCE_BACKEND == "memory":
        # 允许测试预先注入数据仓
        store = getattr(app.state, "chat_store", None) or InMemoryChatStore()
        app.state.chat_store = store
        uow_factory = build_uow_factory(store)
        logger.info("persistence_initialized", backend="memory")
    else:
        # 启动时创建数据库表（仅开发环境）。生产应使用迁移工具
        if settings.DEBUG:
            from infrastructure.database import create_tables
            await create_tables()
            logger.info("database_initialized", message="Database tables created (development)")
        uow_factory = build_uow_factory()
        logger.info("persistence_initialized", backend="sqlalchemy")

    # 初始化实时通信（WebSocket）：单进程内的连接表与在线状态
    conn_mgr = ConnectionManager()
    presence = PresenceRegistry()
    app.state.uow_factory = uow_factory
    app.state.realtime_connections = conn_mgr
    app.state.presence = presence
    app.state.chat_service = ChatRealtimeService(
        uow_factory=uow_factory,
        connections=conn_mgr,
        presence=presence,
    )
    logger.info("realtime_initialized")

    yield

    # 关闭实时通信：停止发送任务并关闭剩余连接
    await conn_mgr.aclose()
    if settings.PERSISTENCE_BACKEND != "memory":
        from infrastructure.database import engine
        await engine.dispose()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="实时聊天服务：WebSocket 消息广播、已读回执、输入状态与在线状态",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. Request ID中间件（最先执行，为后续中间件提供request_id）
app.add_middleware(WebSocketSessionLogMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

# 2. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由
app.include_router(chat_routes.router, prefix="/api/v1")
app.include_router(ws_routes.router, prefix="/api/v1")


# 根路径
@app.get("/", tags=["Root"])
async def root():
    """API根路径"""
    return success_response(
        data={
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs",
            "websocket": "/api/v1/ws/chat",
        },
        message="Welcome",
    )


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    return success_response(data={"status": "healthy"}, message="OK")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
