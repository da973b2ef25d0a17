"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store / 服务实例

Store 与协作方实例通过 app.state 管理，在 lifespan 中初始化/清理。
身份层由上游负责：请求头 X-User-Id 携带已认证的用户 ID，此处只做用户查找。
"""

from enum import StrEnum

from fastapi import Depends, Header, Request
from ticketflow.core.models import Actor, TaskKind
from ticketflow.core.notifications import SqliteNotificationService
from ticketflow.core.store import StoreGroup
from ticketflow.core.sweeper import ExpirySweeper

from .errors import UnauthenticatedError


class Collection(StrEnum):
    """URL 集合名"""

    TASKS = "tasks"
    TEST_TASKS = "test-tasks"

    @property
    def kind(self) -> TaskKind:
        return TaskKind.TASK if self is Collection.TASKS else TaskKind.TEST_TASK


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_notifier(request: Request) -> SqliteNotificationService:
    """从 app.state 获取通知服务实例"""
    return request.app.state.notifier


def get_sweeper(request: Request) -> ExpirySweeper:
    """从 app.state 获取过期扫描器实例"""
    return request.app.state.sweeper


async def get_actor(
    x_user_id: str | None = Header(default=None),
    store_group: StoreGroup = Depends(get_store_group),
) -> Actor:
    """解析当前操作者 {id, role}"""
    if not x_user_id:
        raise UnauthenticatedError("Missing X-User-Id header")
    user = await store_group.user_store.get_user(x_user_id)
    if user is None:
        raise UnauthenticatedError(f"Unknown user {x_user_id}")
    return user.as_actor()
