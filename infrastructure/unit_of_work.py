"""Unit of Work 实现（SQLAlchemy / 内存）"""
from __future__ import annotations

from functools import partial
from typing import Optional, Callable
import inspect

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.repositories.user_repository import SQLAlchemyUserRepository
from infrastructure.repositories.chat_repository import SQLAlchemyChatRepository
from infrastructure.repositories.memory import (
    InMemoryChatRepository,
    InMemoryChatStore,
    InMemoryUserRepository,
    Journal,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        if session_factory is None:
            from infrastructure.database import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.user_repository = SQLAlchemyUserRepository(self.session)
        self.chat_repository = SQLAlchemyChatRepository(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # 事务在 commit/rollback 后通常会结束，这里仅在仍然活动时做安全关闭
            tx = getattr(self, "_transaction", None)
            if tx is not None and getattr(tx, "is_active", False):
                close = getattr(tx, "close", None)
                if callable(close):
                    res = close()
                    if inspect.isawaitable(res):
                        await res
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self.user_repository = None  # type: ignore[assignment]
            self.chat_repository = None  # type: ignore[assignment]

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """内存版 Unit of Work：写操作记入日志，commit 时一次性应用。

    commit 内部没有 await，对同一事件循环上的其它协程而言是原子的。
    """

    def __init__(self, store: InMemoryChatStore, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self._store = store
        self._journal: Journal = []

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        self._journal = []
        self.user_repository = InMemoryUserRepository(self._store, self._journal)
        self.chat_repository = InMemoryChatRepository(self._store, self._journal)
        return self

    async def commit(self) -> None:
        if not self._readonly:
            for apply in self._journal:
                apply()
        self._journal.clear()
        self._committed = True

    async def rollback(self) -> None:
        self._journal.clear()
        self._committed = False


UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]


def build_uow_factory(store: Optional[InMemoryChatStore] = None) -> UnitOfWorkFactory:
    """根据 PERSISTENCE_BACKEND 选择 Unit of Work 工厂。"""
    if settings.PERSISTENCE_BACKEND == "memory" or store is not None:
        return partial(InMemoryUnitOfWork, store if store is not None else InMemoryChatStore())
    return SQLAlchemyUnitOfWork
