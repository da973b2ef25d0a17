"""Access Control Guard -- 任务级访问判定

判定顺序：任务不存在 → False；admin → True；创建者 → True；
assigned_to 成员 → True；其余 → False。
Task 与 TestTask 使用同一守卫，按 TaskKind 选择集合。
"""

import structlog

from .exceptions import AuthorizationError
from .models.enums import TaskKind, UserRole, require_all_roles
from .models.task import Task
from .models.user import Actor
from .store import StoreGroup

log = structlog.get_logger()

# 守卫第一步：角色直接放行
_ROLE_GRANTS_ALL: dict[UserRole, bool] = dict(
    require_all_roles(
        {
            UserRole.ADMIN: True,
            UserRole.AGENT_COMMERCIAL: False,
            UserRole.CLIENT: False,
            UserRole.RESPONSIBLE_CLIENT: False,
            UserRole.PROJECT_MANAGER: False,
            UserRole.GROUP_LEADER: False,
            UserRole.DEVELOPER: False,
            UserRole.RESPONSIBLE_TESTER: False,
            UserRole.TESTER: False,
        },
        "access guard",
    )
)

# 评论及其他任务变更：特权角色跳过守卫
_BYPASSES_GUARD: dict[UserRole, bool] = dict(
    require_all_roles(
        {
            UserRole.ADMIN: True,
            UserRole.AGENT_COMMERCIAL: False,
            UserRole.CLIENT: False,
            UserRole.RESPONSIBLE_CLIENT: False,
            UserRole.PROJECT_MANAGER: True,
            UserRole.GROUP_LEADER: False,
            UserRole.DEVELOPER: False,
            UserRole.RESPONSIBLE_TESTER: True,
            UserRole.TESTER: False,
        },
        "guard bypass",
    )
)

# 允许创建的角色
CREATE_ROLES: dict[TaskKind, frozenset[UserRole]] = {
    TaskKind.TASK: frozenset(
        {
            UserRole.ADMIN,
            UserRole.PROJECT_MANAGER,
            UserRole.AGENT_COMMERCIAL,
            UserRole.GROUP_LEADER,
        }
    ),
    TaskKind.TEST_TASK: frozenset({UserRole.ADMIN, UserRole.RESPONSIBLE_TESTER}),
}


def is_privileged(role: UserRole) -> bool:
    """特权角色（admin / projectManager / responsibleTester）"""
    return _BYPASSES_GUARD[role]


def grants_access(user_id: str, role: UserRole, task: Task) -> bool:
    """对已加载任务应用守卫规则"""
    if _ROLE_GRANTS_ALL[role]:
        return True
    if task.created_by == user_id:
        return True
    return user_id in task.assigned_to


def ensure_can_create(actor: Actor, kind: TaskKind) -> None:
    """校验创建权限

    Raises:
        AuthorizationError: 角色不允许创建该类任务
    """
    if actor.role not in CREATE_ROLES[kind]:
        log.info(
            "create_denied",
            user_id=actor.user_id,
            role=actor.role.value,
            kind=kind.value,
        )
        raise AuthorizationError(f"Role {actor.role.value} cannot create {kind.value}")


def ensure_can_modify(actor: Actor, task: Task) -> None:
    """校验变更权限：特权角色或通过守卫

    Raises:
        AuthorizationError: 无权变更该任务
    """
    if is_privileged(actor.role) or grants_access(actor.user_id, actor.role, task):
        return
    log.info(
        "modify_denied",
        user_id=actor.user_id,
        role=actor.role.value,
        task_id=task.task_id,
    )
    raise AuthorizationError("You do not have access to this task")


class AccessGuard:
    """按 task_id 判定访问权限（任务不存在返回 False，不抛异常）"""

    def __init__(self, stores: StoreGroup) -> None:
        self._stores = stores

    async def has_access(
        self,
        user_id: str,
        role: UserRole,
        task_id: str,
        kind: TaskKind = TaskKind.TASK,
    ) -> bool:
        async with self._stores.lock:
            task = await self._stores.tasks(kind).get_task(task_id, with_history=False)
        if task is None:
            return False
        return grants_access(user_id, role, task)
