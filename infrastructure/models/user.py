"""
用户数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, String, Boolean, DateTime
from datetime import datetime, timezone

from .base import Base


class UserModel(Base):
    """
    用户数据库模型（展示信息）

    这是数据库表的映射，不包含业务逻辑
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, comment="用户ID")
    name = Column(String(100), nullable=False, comment="显示名")
    email = Column(String(100), unique=True, index=True, nullable=True, comment="邮箱")
    profile_picture = Column(String(1024), nullable=True, comment="头像URL")
    is_active = Column(Boolean, default=True, nullable=False, comment="是否激活")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    def __repr__(self):
        return f"<UserModel(id={self.id}, name='{self.name}')>"
