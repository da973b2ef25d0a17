"""User Domain Model

组织层级通过可选回指字段编码：
projectManager -> groupLeader -> developer，responsibleTester -> tester。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import UserRole


class User(BaseModel):
    """用户"""

    user_id: str = Field(description="唯一标识，ULID 格式")
    first_name: str
    last_name: str
    email: str
    role: UserRole
    project_manager: str | None = None
    group_leader: str | None = None
    responsible_tester: str | None = None
    created_at: datetime

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def mention_handle(self) -> str:
        """@提及使用的名称：firstName + lastName 直接拼接"""
        return f"{self.first_name}{self.last_name}"

    def as_actor(self) -> "Actor":
        return Actor(user_id=self.user_id, role=self.role, name=self.display_name)


class Actor(BaseModel):
    """当前操作者（由身份层提供，核心直接信任）"""

    user_id: str
    role: UserRole
    name: str = ""
