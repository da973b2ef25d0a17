"""TaskService -- 任务创建/更新/指派/附件/查询业务逻辑

变更流程统一为：
1. 锁外解析引用的用户（避免持锁期间做无关查询）
2. 持 StoreGroup.lock：加载任务 → 权限校验 → workflow 变更 → 单事务提交 task + history
3. 释放锁后发送通知（状态变更 / 指派 / 提及）
"""

from datetime import UTC, datetime

import structlog
from ticketflow.core.access import ensure_can_create, ensure_can_modify
from ticketflow.core.exceptions import NotFoundError, ValidationError
from ticketflow.core.models import (
    Actor,
    AssignedDetails,
    Attachment,
    CreatedDetails,
    HistoryAction,
    ListFilter,
    Mention,
    QueryPredicate,
    Task,
    TaskCreate,
    TaskKind,
    TaskStatus,
    TaskUpdate,
    TestCase,
    TestCaseStatus,
    UpdatedDetails,
    User,
    UserRole,
)
from ticketflow.core.notifications import (
    SqliteNotificationService,
    related_type_for,
    task_mention_message,
)
from ticketflow.core.scoping import build_scoped_query
from ticketflow.core.store import (
    StoreGroup,
    atomic,
    save_task_with_history,
    write_task_with_history,
)
from ticketflow.core.workflow import (
    apply_field_updates,
    apply_status_change,
    new_entry,
    record_test_result,
)
from ulid import ULID

from .common import (
    load_task,
    mark_mentions_notified,
    notify_status_changes,
    read_task,
    staged_attachments,
    with_display_names,
)
from .uploads import UploadedFile

log = structlog.get_logger()

DEFAULT_TEST_ENVIRONMENT = "Staging"


class TaskService:
    """任务业务服务（Task 与 TestTask 共用，按 kind 选择集合）"""

    def __init__(
        self,
        store_group: StoreGroup,
        notifier: SqliteNotificationService,
    ) -> None:
        self._stores = store_group
        self._notifier = notifier

    # ------------------------------------------------------------------
    # 创建
    # ------------------------------------------------------------------

    async def create_task(
        self,
        kind: TaskKind,
        data: TaskCreate,
        actor: Actor,
        files: list[UploadedFile] | None = None,
    ) -> Task:
        """创建 Task / TestTask

        Raises:
            AuthorizationError: 角色不允许创建
            ValidationError: 必填字段为空，或 TestTask 指派了非 tester
            NotFoundError: ticket / 父任务 / 关联任务 / 用户不存在
        """
        ensure_can_create(actor, kind)
        name = data.name.strip()
        description = data.description.strip()
        if not name:
            raise ValidationError("Task name is required", field="name")
        if not description:
            raise ValidationError("Task description is required", field="description")

        await self._resolve_assignees(kind, data.assigned_to)
        mention_ids = await self._existing_user_ids(data.mentions)

        now = datetime.now(UTC)
        task_id = str(ULID())
        store = self._stores.tasks(kind)
        async with self._stores.lock:
            ticket_store = self._stores.ticket_store
            if data.ticket_id and await ticket_store.get_ticket(data.ticket_id) is None:
                raise NotFoundError("Ticket", data.ticket_id)
            parent = None
            if data.parent_task_id:
                parent = await load_task(self._stores, kind, data.parent_task_id)
            if kind == TaskKind.TEST_TASK and data.related_task_id:
                await load_task(
                    self._stores, TaskKind.TASK, data.related_task_id, with_history=False
                )

            with staged_attachments(
                self._stores.attachment_store, task_id, files or [], actor.user_id
            ) as attachments:
                async with atomic(self._stores.conn):
                    number = await store.allocate_number(now)
                    task = Task(
                        task_id=task_id,
                        kind=kind,
                        number=number,
                        name=name,
                        description=description,
                        urgency=data.urgency,
                        priority=data.priority,
                        created_by=actor.user_id,
                        assigned_to=data.assigned_to,
                        ticket_id=data.ticket_id,
                        parent_task_id=data.parent_task_id,
                        related_task_id=(
                            data.related_task_id if kind == TaskKind.TEST_TASK else None
                        ),
                        due_date=data.due_date,
                        estimated_hours=data.estimated_hours,
                        attachments=attachments,
                        mentions=[Mention(user_id=user_id) for user_id in mention_ids],
                        created_at=now,
                        updated_at=now,
                    )
                    if kind == TaskKind.TEST_TASK:
                        task.test_environment = (
                            data.test_environment or DEFAULT_TEST_ENVIRONMENT
                        )
                        task.test_coverage = data.test_coverage
                        task.test_cases = [
                            TestCase(
                                case_id=str(ULID()),
                                name=case.name,
                                description=case.description,
                                expected_result=case.expected_result,
                            )
                            for case in data.test_cases
                        ]
                    created = new_entry(
                        task,
                        HistoryAction.CREATED,
                        actor.user_id,
                        CreatedDetails(number=number).to_details(),
                        now,
                    )
                    await write_task_with_history(
                        store, self._stores.history_store, task, [created], is_new=True
                    )

                    if parent is not None:
                        parent_entry = apply_field_updates(
                            parent,
                            {"subtask_ids": [*parent.subtask_ids, task_id]},
                            actor.user_id,
                            now,
                        )
                        await write_task_with_history(
                            store,
                            self._stores.history_store,
                            parent,
                            [parent_entry] if parent_entry else [],
                        )

        log.info(
            "task_created",
            task_id=task_id,
            kind=kind.value,
            number=number,
            created_by=actor.user_id,
            assignee_count=len(task.assigned_to),
        )

        for user_id in task.assigned_to:
            await self._notifier.notify_task_assignment(
                user_id, task_id, task.name, actor.name, related_type_for(task)
            )
        if mention_ids:
            await self._notifier.create_notifications(
                mention_ids,
                task_mention_message(actor.name, task),
                task_id,
                related_type_for(task),
            )
            await mark_mentions_notified(self._stores, kind, task_id, mention_ids)

        return await self.get_task(kind, task_id)

    # ------------------------------------------------------------------
    # 更新
    # ------------------------------------------------------------------

    async def update_task(
        self,
        kind: TaskKind,
        task_id: str,
        data: TaskUpdate,
        actor: Actor,
        reason: str = "",
    ) -> Task:
        """更新任务字段与状态

        非状态字段先写入（一条 updated 记录），状态变化随后写入（一条 statusChanged 记录）。
        """
        changes = data.changes()
        new_status: TaskStatus | None = changes.pop("status", None)
        for field in ("name", "description"):
            if field in changes and not (changes[field] or "").strip():
                raise ValidationError(f"Task {field} cannot be empty", field=field)
        if changes.get("assigned_to"):
            await self._resolve_assignees(kind, changes["assigned_to"])

        now = datetime.now(UTC)
        store = self._stores.tasks(kind)
        async with self._stores.lock:
            task = await load_task(self._stores, kind, task_id)
            ensure_can_modify(actor, task)
            previous_assignees = set(task.assigned_to)

            entries = []
            updated = apply_field_updates(task, changes, actor.user_id, now)
            if updated is not None:
                entries.append(updated)
            if new_status is not None:
                status_entry = apply_status_change(
                    task, new_status, actor.user_id, now, reason=reason
                )
                if status_entry is not None:
                    entries.append(status_entry)

            if entries:
                await save_task_with_history(
                    self._stores.conn, store, self._stores.history_store, task, entries
                )

        if entries:
            log.info(
                "task_updated",
                task_id=task_id,
                kind=kind.value,
                actions=[e.action.value for e in entries],
            )
        await notify_status_changes(self._notifier, task, entries, actor.name)
        for user_id in task.assigned_to:
            if user_id not in previous_assignees:
                await self._notifier.notify_task_assignment(
                    user_id, task_id, task.name, actor.name, related_type_for(task)
                )
        return await with_display_names(self._stores, task)

    async def change_status(
        self,
        kind: TaskKind,
        task_id: str,
        status: TaskStatus,
        actor: Actor,
        reason: str = "",
    ) -> Task:
        """仅变更状态"""
        return await self.update_task(
            kind, task_id, TaskUpdate(status=status), actor, reason=reason
        )

    async def assign_users(
        self,
        kind: TaskKind,
        task_id: str,
        user_ids: list[str],
        actor: Actor,
    ) -> Task:
        """追加指派用户，仅新增用户产生 assigned 记录与通知"""
        if not user_ids:
            raise ValidationError("At least one user is required", field="user_ids")
        await self._resolve_assignees(kind, user_ids)

        now = datetime.now(UTC)
        store = self._stores.tasks(kind)
        async with self._stores.lock:
            task = await load_task(self._stores, kind, task_id)
            ensure_can_modify(actor, task)
            added = [u for u in dict.fromkeys(user_ids) if u not in task.assigned_to]
            if added:
                task.assigned_to = [*task.assigned_to, *added]
                task.updated_at = now
                entry = new_entry(
                    task,
                    HistoryAction.ASSIGNED,
                    actor.user_id,
                    AssignedDetails(assigned_to=added).to_details(),
                    now,
                )
                await save_task_with_history(
                    self._stores.conn, store, self._stores.history_store, task, [entry]
                )

        for user_id in added:
            await self._notifier.notify_task_assignment(
                user_id, task_id, task.name, actor.name, related_type_for(task)
            )
        log.info("task_assigned", task_id=task_id, added=added)
        return await with_display_names(self._stores, task)

    async def add_attachments(
        self,
        kind: TaskKind,
        task_id: str,
        files: list[UploadedFile],
        actor: Actor,
    ) -> Task:
        """追加附件，产生 updated 记录 ["attachments"]"""
        if not files:
            raise ValidationError("At least one file is required", field="files")

        now = datetime.now(UTC)
        store = self._stores.tasks(kind)
        async with self._stores.lock:
            task = await load_task(self._stores, kind, task_id)
            ensure_can_modify(actor, task)
            with staged_attachments(
                self._stores.attachment_store, task_id, files, actor.user_id
            ) as attachments:
                task.attachments.extend(attachments)
                task.updated_at = now
                entry = new_entry(
                    task,
                    HistoryAction.UPDATED,
                    actor.user_id,
                    UpdatedDetails(updated_fields=["attachments"]).to_details(),
                    now,
                )
                await save_task_with_history(
                    self._stores.conn, store, self._stores.history_store, task, [entry]
                )

        return await with_display_names(self._stores, task)

    async def get_attachment(
        self,
        kind: TaskKind,
        task_id: str,
        storage_ref: str,
        actor: Actor,
    ) -> tuple[Attachment, bytes]:
        """读取附件内容（需要任务访问权限）"""
        task = await read_task(self._stores, kind, task_id, with_history=False)
        ensure_can_modify(actor, task)
        attachment = next((a for a in task.attachments if a.storage_ref == storage_ref), None)
        if attachment is None:
            raise NotFoundError("Attachment", storage_ref)
        content = self._stores.attachment_store.get(storage_ref)
        if content is None:
            log.warning("attachment_file_missing", task_id=task_id, storage_ref=storage_ref)
            raise NotFoundError("Attachment", storage_ref)
        return attachment, content

    async def record_test_result(
        self,
        task_id: str,
        case_id: str,
        result: TestCaseStatus,
        actor: Actor,
    ) -> Task:
        """记录 TestTask 用例结果；全部执行后自动流转 TestPassed / TestFailed"""
        kind = TaskKind.TEST_TASK
        now = datetime.now(UTC)
        store = self._stores.tasks(kind)
        async with self._stores.lock:
            task = await load_task(self._stores, kind, task_id)
            ensure_can_modify(actor, task)
            _, entries = record_test_result(task, case_id, result, actor.user_id, now)
            await save_task_with_history(
                self._stores.conn, store, self._stores.history_store, task, entries
            )

        log.info("test_result_recorded", task_id=task_id, case_id=case_id, result=result.value)
        await notify_status_changes(self._notifier, task, entries, actor.name)
        return await with_display_names(self._stores, task)

    # ------------------------------------------------------------------
    # 查询（均持 StoreGroup.lock，不会读到未提交的写入）
    # ------------------------------------------------------------------

    async def get_task(self, kind: TaskKind, task_id: str) -> Task:
        """查询任务详情（含 history 与评论作者显示名）"""
        task = await read_task(self._stores, kind, task_id)
        return await with_display_names(self._stores, task)

    async def get_task_by_number(self, kind: TaskKind, number: str) -> Task:
        """按编号 TASK-YYYYMMDD-NNNN 查询任务详情

        Raises:
            NotFoundError: 编号不存在
        """
        async with self._stores.lock:
            task = await self._stores.tasks(kind).get_task_by_number(number)
        if task is None:
            raise NotFoundError(kind.value, number)
        return await with_display_names(self._stores, task)

    async def list_tasks(
        self,
        kind: TaskKind,
        actor: Actor,
        list_filter: ListFilter | None = None,
    ) -> list[Task]:
        """按角色范围查询任务列表"""
        async with self._stores.lock:
            predicate = await build_scoped_query(actor, list_filter, self._stores.user_store)
            return await self._stores.tasks(kind).list_tasks(predicate)

    async def list_testing_tasks(self, kind: TaskKind, actor: Actor) -> list[Task]:
        """角色范围内处于 Testing 的任务"""
        async with self._stores.lock:
            predicate = await build_scoped_query(actor, None, self._stores.user_store)
            return await self._stores.tasks(kind).list_tasks(
                predicate.combine(status=TaskStatus.TESTING)
            )

    async def list_ticket_tasks(
        self, kind: TaskKind, ticket_id: str, actor: Actor
    ) -> list[Task]:
        """角色范围内属于指定 ticket 的任务"""
        async with self._stores.lock:
            if await self._stores.ticket_store.get_ticket(ticket_id) is None:
                raise NotFoundError("Ticket", ticket_id)
            predicate = await build_scoped_query(actor, None, self._stores.user_store)
            return await self._stores.tasks(kind).list_tasks(
                predicate.combine(ticket_id=ticket_id)
            )

    async def list_blocked_subtasks(self, kind: TaskKind, parent_task_id: str) -> list[Task]:
        """父任务下处于 Blocked 的子任务"""
        predicate = QueryPredicate(
            unrestricted=True,
            status=TaskStatus.BLOCKED,
            parent_task_id=parent_task_id,
        )
        async with self._stores.lock:
            await load_task(self._stores, kind, parent_task_id, with_history=False)
            return await self._stores.tasks(kind).list_tasks(predicate)

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    async def _resolve_assignees(self, kind: TaskKind, user_ids: list[str]) -> dict[str, User]:
        """校验指派用户存在；TestTask 只能指派 tester"""
        if not user_ids:
            return {}
        users = await self._stores.user_store.get_users(list(user_ids))
        missing = [u for u in user_ids if u not in users]
        if missing:
            raise NotFoundError("User", missing[0])
        if kind == TaskKind.TEST_TASK and any(
            user.role != UserRole.TESTER for user in users.values()
        ):
            raise ValidationError("All assigned users must be testers", field="assigned_to")
        return users

    async def _existing_user_ids(self, user_ids: list[str]) -> list[str]:
        """过滤掉不存在的用户（保持顺序，去重）"""
        if not user_ids:
            return []
        unique_ids = list(dict.fromkeys(user_ids))
        users = await self._stores.user_store.get_users(unique_ids)
        unknown = [u for u in unique_ids if u not in users]
        if unknown:
            log.warning("mentions_unknown_users_dropped", user_ids=unknown)
        return [u for u in unique_ids if u in users]
