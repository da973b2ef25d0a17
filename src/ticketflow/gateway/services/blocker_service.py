"""BlockerService -- 添加/解除阻塞

添加阻塞：status 强制切换为 Blocked，blocker 与 history 在同一事务提交。
解除最后一个阻塞：任务恢复到阻塞前状态（见 workflow.resolve_blocker）。
"""

from datetime import UTC, datetime

import structlog
from ticketflow.core.access import ensure_can_modify
from ticketflow.core.models import Actor, Blocker, TaskKind
from ticketflow.core.notifications import SqliteNotificationService
from ticketflow.core.store import StoreGroup, save_task_with_history
from ticketflow.core.workflow import add_blocker, resolve_blocker

from .common import load_task, notify_status_changes

log = structlog.get_logger()


class BlockerService:
    """阻塞业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        notifier: SqliteNotificationService,
    ) -> None:
        self._stores = store_group
        self._notifier = notifier

    async def add_blocker(
        self,
        kind: TaskKind,
        task_id: str,
        reason: str,
        actor: Actor,
        description: str | None = None,
    ) -> Blocker:
        """添加阻塞

        Raises:
            NotFoundError: 任务不存在
            AuthorizationError: 无权变更该任务
            ValidationError: reason 为空
        """
        now = datetime.now(UTC)
        store = self._stores.tasks(kind)
        async with self._stores.lock:
            task = await load_task(self._stores, kind, task_id)
            ensure_can_modify(actor, task)
            blocker, entries = add_blocker(task, reason, actor.user_id, now, description)
            await save_task_with_history(
                self._stores.conn, store, self._stores.history_store, task, entries
            )

        log.info(
            "blocker_added",
            task_id=task_id,
            blocker_id=blocker.blocker_id,
            open_blockers=len(task.open_blockers),
        )
        await notify_status_changes(self._notifier, task, entries, actor.name)
        return blocker

    async def resolve_blocker(
        self,
        kind: TaskKind,
        task_id: str,
        blocker_id: str,
        actor: Actor,
    ) -> Blocker:
        """解除阻塞

        Raises:
            NotFoundError: 任务或 blocker 不存在
            AuthorizationError: 无权变更该任务
            ValidationError: blocker 已解除
        """
        now = datetime.now(UTC)
        store = self._stores.tasks(kind)
        async with self._stores.lock:
            task = await load_task(self._stores, kind, task_id)
            ensure_can_modify(actor, task)
            blocker, entries = resolve_blocker(task, blocker_id, actor.user_id, now)
            await save_task_with_history(
                self._stores.conn, store, self._stores.history_store, task, entries
            )

        log.info(
            "blocker_resolved",
            task_id=task_id,
            blocker_id=blocker_id,
            status=task.status.value,
            open_blockers=len(task.open_blockers),
        )
        await notify_status_changes(self._notifier, task, entries, actor.name)
        return blocker
