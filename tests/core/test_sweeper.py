"""ExpirySweeper 测试 -- 通过 tick(now) 手动触发，不等待真实时间

测试内容：
1. Testing 超出 estimated_hours → Expired（reason 含 "2.00" 与 "1"）
2. ToDo 且 due_date 已过 → Overdue
3. 无进入 Testing 记录的任务被跳过
4. 单条失败不中断批次
5. 幂等：第二轮不再处理
6. start / stop 生命周期
"""

from datetime import UTC, datetime, timedelta

import pytest
from ticketflow.core.config import SweeperConfig
from ticketflow.core.models import HistoryAction, TaskKind, TaskStatus, UserRole
from ticketflow.core.sweeper import ExpirySweeper
from ticketflow.core.workflow import apply_status_change


@pytest.fixture
def sweeper(store_group, notifier) -> ExpirySweeper:
    return ExpirySweeper(store_group, notifier, SweeperConfig(interval_s=1))


async def _testing_task(make_task, persist, creator, now, *, kind=TaskKind.TASK, **fields):
    task = await make_task(creator, kind=kind, created_at=now - timedelta(hours=5), **fields)
    started = now - timedelta(hours=3)
    entries = [
        apply_status_change(task, TaskStatus.IN_PROGRESS, creator.user_id, started),
        apply_status_change(task, TaskStatus.TESTING, creator.user_id, now - timedelta(hours=2)),
    ]
    await persist(task, entries)
    return task


class TestExpiry:
    async def test_expired_after_estimate(
        self, sweeper, store_group, make_user, make_task, persist
    ):
        now = datetime.now(UTC)
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        task = await _testing_task(make_task, persist, pm, now, estimated_hours=1)

        result = await sweeper.tick(now)

        assert result.expired == 1
        loaded = await store_group.tasks(TaskKind.TASK).get_task(task.task_id)
        assert loaded.status == TaskStatus.EXPIRED
        last = loaded.history[-1]
        assert last.action == HistoryAction.STATUS_CHANGED
        assert last.performed_by == pm.user_id
        assert last.details["previousStatus"] == "Testing"
        assert last.details["newStatus"] == "Expired"
        assert last.details["reason"] == (
            "Testing duration (2.00 hours) exceeded estimated hours (1 hours)"
        )

    async def test_within_estimate_untouched(
        self, sweeper, store_group, make_user, make_task, persist
    ):
        now = datetime.now(UTC)
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        task = await _testing_task(make_task, persist, pm, now, estimated_hours=3)

        result = await sweeper.tick(now)

        assert result.expired == 0
        loaded = await store_group.tasks(TaskKind.TASK).get_task(task.task_id)
        assert loaded.status == TaskStatus.TESTING

    async def test_test_tasks_are_swept(
        self, sweeper, store_group, make_user, make_task, persist
    ):
        now = datetime.now(UTC)
        rt = await make_user("Rita", "Tester", UserRole.RESPONSIBLE_TESTER)
        task = await _testing_task(
            make_task, persist, rt, now, kind=TaskKind.TEST_TASK, estimated_hours=1.5
        )
        await sweeper.tick(now)
        loaded = await store_group.tasks(TaskKind.TEST_TASK).get_task(task.task_id)
        assert loaded.status == TaskStatus.EXPIRED
        assert "(1.5 hours)" in loaded.history[-1].details["reason"]

    async def test_without_testing_entry_skipped(
        self, sweeper, store_group, make_user, make_task
    ):
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        task = await make_task(pm, status=TaskStatus.TESTING, estimated_hours=0)

        result = await sweeper.tick(datetime.now(UTC) + timedelta(days=30))

        assert result.skipped == 1
        assert result.failed == 0
        loaded = await store_group.tasks(TaskKind.TASK).get_task(task.task_id)
        assert loaded.status == TaskStatus.TESTING

    async def test_status_change_notifies(
        self, sweeper, notifier, make_user, make_task, persist
    ):
        now = datetime.now(UTC)
        admin = await make_user("Ada", "Admin", UserRole.ADMIN)
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        await _testing_task(make_task, persist, pm, now, name="Checkout", estimated_hours=1)

        await sweeper.tick(now)

        [notification] = await notifier.list_notifications(admin.user_id)
        assert notification.message == (
            'Paula Manager changed the status of task "Checkout" from Testing to Expired'
        )


class TestOverdue:
    async def test_overdue_after_due_date(self, sweeper, store_group, make_user, make_task):
        now = datetime.now(UTC)
        due = now - timedelta(days=1)
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        task = await make_task(pm, due_date=due)

        result = await sweeper.tick(now)

        assert result.overdue == 1
        loaded = await store_group.tasks(TaskKind.TASK).get_task(task.task_id)
        assert loaded.status == TaskStatus.OVERDUE
        assert loaded.history[-1].details["reason"] == (
            f"Task exceeded due date ({due.isoformat()})"
        )

    async def test_future_due_date_untouched(self, sweeper, make_user, make_task):
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        await make_task(pm, due_date=datetime.now(UTC) + timedelta(hours=1))
        assert (await sweeper.tick()).overdue == 0


class TestBatchSemantics:
    async def test_idempotent_second_tick(self, sweeper, store_group, make_user, make_task):
        now = datetime.now(UTC)
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        task = await make_task(pm, due_date=now - timedelta(days=1))

        await sweeper.tick(now)
        second = await sweeper.tick(now + timedelta(minutes=1))

        assert second.overdue == 0
        loaded = await store_group.tasks(TaskKind.TASK).get_task(task.task_id)
        statuses = [e for e in loaded.history if e.action == HistoryAction.STATUS_CHANGED]
        assert len(statuses) == 1

    async def test_one_failure_does_not_abort_batch(
        self, sweeper, store_group, make_user, make_task, monkeypatch: pytest.MonkeyPatch
    ):
        now = datetime.now(UTC)
        pm = await make_user("Paula", "Manager", UserRole.PROJECT_MANAGER)
        bad = await make_task(pm, due_date=now - timedelta(days=2))
        good = await make_task(pm, due_date=now - timedelta(days=1))

        original = ExpirySweeper._mark_overdue_one

        async def flaky(self, kind, task_id, at):
            if task_id == bad.task_id:
                raise RuntimeError("corrupted row")
            return await original(self, kind, task_id, at)

        monkeypatch.setattr(ExpirySweeper, "_mark_overdue_one", flaky)
        result = await sweeper.tick(now)

        assert result.failed == 1
        assert result.overdue == 1
        store = store_group.tasks(TaskKind.TASK)
        assert (await store.get_task(good.task_id)).status == TaskStatus.OVERDUE
        assert (await store.get_task(bad.task_id)).status == TaskStatus.TODO


class TestLifecycle:
    async def test_start_stop(self, sweeper):
        assert sweeper.is_running() is False
        await sweeper.start()
        assert sweeper.is_running() is True
        with pytest.raises(RuntimeError):
            await sweeper.start()
        await sweeper.stop()
        assert sweeper.is_running() is False

    async def test_stop_when_not_running_is_noop(self, sweeper):
        await sweeper.stop()
        assert sweeper.is_running() is False
