"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional, Iterable, Dict
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.user.entity import User
from domain.user.repository import UserRepository
from infrastructure.models.user import UserModel


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        """将数据库模型转换为领域实体"""
        return User(
            id=model.id,
            name=model.name,
            email=model.email,
            profile_picture=model.profile_picture,
            is_active=model.is_active,
            created_at=model.created_at,
        )

    async def create(self, user: User) -> User:
        model = UserModel(
            id=user.id or uuid.uuid4().hex,
            name=user.name,
            email=user.email,
            profile_picture=user.profile_picture,
            is_active=user.is_active,
            created_at=user.created_at,
        )
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get_by_id(self, user_id: str) -> Optional[User]:
        result = await self.session.execute(
            select(UserModel).where(UserModel.id == user_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = {uid for uid in user_ids if uid}
        if not ids:
            return {}
        result = await self.session.execute(
            select(UserModel).where(UserModel.id.in_(ids))
        )
        return {m.id: self._to_entity(m) for m in result.scalars().all()}
