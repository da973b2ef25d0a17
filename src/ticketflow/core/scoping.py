"""Role-Query Builder -- 角色 → 任务查询谓词

每个角色在 _SCOPE_RULES 中有且仅有一条规则，导入时校验覆盖全部角色。
"""

from collections.abc import Awaitable, Callable

from .models.enums import ListFilter, TaskStatus, UserRole, require_all_roles
from .models.query import QueryPredicate
from .models.user import Actor, User
from .store.user_store import SqliteUserStore

ScopeRule = Callable[[Actor, ListFilter | None, SqliteUserStore], Awaitable[QueryPredicate]]


async def _unrestricted(
    actor: Actor, list_filter: ListFilter | None, users: SqliteUserStore
) -> QueryPredicate:
    return QueryPredicate(unrestricted=True)


async def _created_or_assigned(
    actor: Actor, list_filter: ListFilter | None, users: SqliteUserStore
) -> QueryPredicate:
    if list_filter == ListFilter.CREATED:
        return QueryPredicate(created_by=[actor.user_id])
    if list_filter == ListFilter.ASSIGNED:
        return QueryPredicate(assigned_to=[actor.user_id])
    return QueryPredicate(created_by=[actor.user_id], assigned_to=[actor.user_id])


async def _managed_teams(
    actor: Actor, list_filter: ListFilter | None, users: SqliteUserStore
) -> QueryPredicate:
    managed_ids = await users.list_ids_managed_by(actor.user_id)
    managed: dict[str, User] = await users.get_users(managed_ids)
    group_leaders = [
        user_id for user_id, user in managed.items() if user.role == UserRole.GROUP_LEADER
    ]
    return QueryPredicate(
        created_by=[actor.user_id, *group_leaders],
        assigned_to=[actor.user_id],
    )


async def _all_testing(
    actor: Actor, list_filter: ListFilter | None, users: SqliteUserStore
) -> QueryPredicate:
    # 全局可见：测试负责人跨团队查看所有 Testing 任务
    return QueryPredicate(statuses=[TaskStatus.TESTING])


async def _assigned_only(
    actor: Actor, list_filter: ListFilter | None, users: SqliteUserStore
) -> QueryPredicate:
    return QueryPredicate(assigned_to=[actor.user_id])


_SCOPE_RULES: dict[UserRole, ScopeRule] = dict(
    require_all_roles(
        {
            UserRole.ADMIN: _unrestricted,
            UserRole.GROUP_LEADER: _created_or_assigned,
            UserRole.PROJECT_MANAGER: _managed_teams,
            UserRole.RESPONSIBLE_CLIENT: _managed_teams,
            UserRole.RESPONSIBLE_TESTER: _all_testing,
            UserRole.AGENT_COMMERCIAL: _assigned_only,
            UserRole.CLIENT: _assigned_only,
            UserRole.DEVELOPER: _assigned_only,
            UserRole.TESTER: _assigned_only,
        },
        "query scope",
    )
)


async def build_scoped_query(
    actor: Actor,
    list_filter: ListFilter | None,
    user_store: SqliteUserStore,
) -> QueryPredicate:
    """根据角色构建任务查询谓词

    Args:
        actor: 当前用户 {id, role}
        list_filter: created / assigned（仅 groupLeader 生效）
        user_store: 用于查询组织层级

    Returns:
        QueryPredicate，可再通过 combine() 叠加调用方条件
    """
    return await _SCOPE_RULES[actor.role](actor, list_filter, user_store)
