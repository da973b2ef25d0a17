"""Role-Query Builder 测试

场景：projectManager P 管理 groupLeader G（G.project_manager == P），G 创建任务 T；
P 既不是 T 的创建者也不在 assigned_to 中，但 P 的范围必须包含 T。
"""

from datetime import UTC, datetime

from ticketflow.core.models import (
    ListFilter,
    TaskKind,
    TaskStatus,
    UserRole,
)
from ticketflow.core.scoping import build_scoped_query


async def _ids(store_group, predicate) -> set[str]:
    tasks = await store_group.tasks(TaskKind.TASK).list_tasks(predicate)
    return {t.task_id for t in tasks}


class TestRoleScopes:
    async def test_project_manager_sees_group_leader_tasks(
        self, store_group, make_user, make_task
    ):
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        gl = await make_user("Gus", "Lead", UserRole.GROUP_LEADER, project_manager=pm.user_id)
        other_pm = await make_user("Otto", "Manager", UserRole.PROJECT_MANAGER)
        t = await make_task(gl)
        foreign = await make_task(other_pm)

        predicate = await build_scoped_query(pm.as_actor(), None, store_group.user_store)
        found = await _ids(store_group, predicate)
        assert t.task_id in found
        assert foreign.task_id not in found

    async def test_manager_scope_ignores_non_leader_reports(
        self, store_group, make_user, make_task
    ):
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        dev = await make_user("Dana", "Dev", UserRole.DEVELOPER, project_manager=pm.user_id)
        by_dev = await make_task(dev)

        predicate = await build_scoped_query(pm.as_actor(), None, store_group.user_store)
        assert by_dev.task_id not in await _ids(store_group, predicate)

    async def test_responsible_client_uses_manager_scope(
        self, store_group, make_user, make_task
    ):
        rc = await make_user("Rosa", "Client", UserRole.RESPONSIBLE_CLIENT)
        gl = await make_user("Gus", "Lead", UserRole.GROUP_LEADER, project_manager=rc.user_id)
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        t = await make_task(gl)
        assigned = await make_task(pm, assigned_to=[rc.user_id])

        predicate = await build_scoped_query(rc.as_actor(), None, store_group.user_store)
        assert await _ids(store_group, predicate) == {t.task_id, assigned.task_id}

    async def test_group_leader_filters(self, store_group, make_user, make_task):
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        gl = await make_user("Gus", "Lead", UserRole.GROUP_LEADER)
        created = await make_task(gl)
        assigned = await make_task(pm, assigned_to=[gl.user_id])
        await make_task(pm)

        actor = gl.as_actor()
        users = store_group.user_store
        assert await _ids(
            store_group, await build_scoped_query(actor, ListFilter.CREATED, users)
        ) == {created.task_id}
        assert await _ids(
            store_group, await build_scoped_query(actor, ListFilter.ASSIGNED, users)
        ) == {assigned.task_id}
        assert await _ids(store_group, await build_scoped_query(actor, None, users)) == {
            created.task_id,
            assigned.task_id,
        }

    async def test_admin_unrestricted(self, store_group, make_user, make_task):
        admin = await make_user("Ada", "Admin", UserRole.ADMIN)
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        a = await make_task(pm)
        b = await make_task(admin)
        predicate = await build_scoped_query(admin.as_actor(), None, store_group.user_store)
        assert predicate.unrestricted is True
        assert await _ids(store_group, predicate) == {a.task_id, b.task_id}

    async def test_responsible_tester_sees_all_testing(self, store_group, make_user, make_task):
        rt = await make_user("Rita", "Tester", UserRole.RESPONSIBLE_TESTER)
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        testing = await make_task(pm, status=TaskStatus.TESTING)
        await make_task(pm, status=TaskStatus.IN_PROGRESS)
        await make_task(rt)

        predicate = await build_scoped_query(rt.as_actor(), None, store_group.user_store)
        assert await _ids(store_group, predicate) == {testing.task_id}

    async def test_other_roles_assigned_only(self, store_group, make_user, make_task):
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        for role in (UserRole.DEVELOPER, UserRole.TESTER, UserRole.CLIENT, UserRole.AGENT_COMMERCIAL):
            user = await make_user("Some", role.value, role)
            assigned = await make_task(pm, assigned_to=[user.user_id])
            await make_task(user)
            predicate = await build_scoped_query(user.as_actor(), None, store_group.user_store)
            assert await _ids(store_group, predicate) == {assigned.task_id}

    async def test_combine_with_caller_filter(self, store_group, make_user, make_task):
        dev = await make_user("Dana", "Dev", UserRole.DEVELOPER)
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        testing = await make_task(pm, assigned_to=[dev.user_id], status=TaskStatus.TESTING)
        await make_task(pm, assigned_to=[dev.user_id])

        predicate = await build_scoped_query(dev.as_actor(), None, store_group.user_store)
        narrowed = predicate.combine(status=TaskStatus.TESTING)
        assert await _ids(store_group, narrowed) == {testing.task_id}
        # 原谓词不受影响
        assert predicate.status is None

    async def test_in_memory_evaluation(self, store_group, make_user, make_task):
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        gl = await make_user("Gus", "Lead", UserRole.GROUP_LEADER, project_manager=pm.user_id)
        task = await make_task(gl, created_at=datetime.now(UTC))
        predicate = await build_scoped_query(pm.as_actor(), None, store_group.user_store)
        assert predicate.matches(task) is True
