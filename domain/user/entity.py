"""
用户领域实体 - 聊天层只关心展示信息
"""
from datetime import datetime
from typing import Optional
from dataclasses import dataclass


@dataclass
class User:
    """用户实体（展示用）

    Account management lives in the platform's user service; the chat core
    only resolves ids to display metadata when it populates messages.
    """

    id: Optional[str]
    name: str
    email: Optional[str] = None
    profile_picture: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.validate_name()

    def validate_name(self) -> None:
        """业务规则：显示名不能为空"""
        if not self.name or not self.name.strip():
            raise ValueError("用户显示名不能为空")
        self.name = self.name.strip()
