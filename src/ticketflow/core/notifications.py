"""通知协作方 -- SQLite 实现

通知写入 notifications 表；@提及按 firstName + lastName 拼接解析为用户。
通知是状态变更之后的副作用：写入失败记录日志，不回滚已提交的任务变更。
"""

import re
from datetime import UTC, datetime

import structlog
from ulid import ULID

from .exceptions import PersistenceError
from .models.enums import RelatedEntityType, UserRole
from .models.notification import Notification
from .models.task import Task
from .store import StoreGroup, atomic

log = structlog.get_logger()

_MENTION_RE = re.compile(r"@(\w+)")


def related_type_for(task: Task) -> RelatedEntityType:
    """任务聚合对应的通知关联类型"""
    return RelatedEntityType(task.kind.value)


def status_change_message(
    changer_name: str, task_name: str, previous: str, new: str
) -> str:
    return f'{changer_name} changed the status of task "{task_name}" from {previous} to {new}'


def comment_mention_message(author_name: str, task_name: str) -> str:
    return f"{author_name} mentioned you in a comment on task: {task_name}"


def task_mention_message(creator_name: str, task: Task) -> str:
    label = "test task" if task.kind.value == "TestTask" else "task"
    return f"{creator_name} mentioned you in {label}: {task.name}"


class SqliteNotificationService:
    """NotificationService 的 SQLite 实现"""

    def __init__(self, stores: StoreGroup) -> None:
        self._stores = stores

    def extract_mentions(self, text: str) -> list[str]:
        """提取文本中的 @name 标记（按出现顺序）"""
        if not text:
            return []
        return _MENTION_RE.findall(text)

    async def find_users_by_mentions(self, tokens: list[str]) -> list[str]:
        """将 @name 标记解析为 user_id"""
        if not tokens:
            return []
        return await self._stores.user_store.find_ids_by_handles(list(dict.fromkeys(tokens)))

    async def create_notifications(
        self,
        user_ids: list[str],
        message: str,
        related_id: str | None,
        related_type: RelatedEntityType,
    ) -> None:
        """为一组用户创建通知（user_ids 去重）"""
        unique_ids = list(dict.fromkeys(user_ids))
        if not unique_ids:
            log.debug("notifications_skipped_no_recipients", related_id=related_id)
            return

        now = datetime.now(UTC)
        notifications = [
            Notification(
                notification_id=str(ULID()),
                user_id=user_id,
                message=message,
                related_id=related_id,
                related_type=related_type,
                created_at=now,
            )
            for user_id in unique_ids
        ]
        try:
            async with self._stores.lock:
                async with atomic(self._stores.conn):
                    await self._stores.notification_store.add_notifications(notifications)
        except PersistenceError as e:
            log.error(
                "notification_dispatch_failed",
                related_id=related_id,
                recipient_count=len(unique_ids),
                error_type=type(e.original_error).__name__,
            )
            return

        log.info(
            "notifications_created",
            related_id=related_id,
            related_type=related_type.value,
            recipient_count=len(unique_ids),
        )

    async def notify_task_assignment(
        self,
        user_id: str,
        task_id: str,
        task_name: str,
        assigner_name: str,
        related_type: RelatedEntityType = RelatedEntityType.TASK,
    ) -> None:
        """通知用户被指派到任务（用户不存在时仅记录日志）"""
        user = await self._stores.user_store.get_user(user_id)
        if user is None:
            log.warning("assignment_notification_user_missing", user_id=user_id)
            return
        await self.create_notifications(
            [user_id],
            f"{assigner_name} assigned you to task: {task_name}",
            task_id,
            related_type,
        )

    async def process_mentions(
        self,
        text: str,
        author_name: str,
        entity_id: str,
        entity_type: RelatedEntityType,
    ) -> None:
        """解析文本中的 @提及并通知被提及用户"""
        tokens = self.extract_mentions(text)
        if not tokens:
            return
        user_ids = await self.find_users_by_mentions(tokens)
        if not user_ids:
            return
        message = f"{author_name} mentioned you in a {entity_type.value.lower()}"
        await self.create_notifications(user_ids, message, entity_id, entity_type)

    async def notify_status_change(
        self, task: Task, previous: str, new: str, changer_name: str
    ) -> None:
        """状态变更通知：assigned_to ∪ 全部 admin（去重）"""
        admin_ids = await self._stores.user_store.list_ids_by_role(UserRole.ADMIN)
        recipients = list(dict.fromkeys([*task.assigned_to, *admin_ids]))
        await self.create_notifications(
            recipients,
            status_change_message(changer_name, task.name, previous, new),
            task.task_id,
            related_type_for(task),
        )

    async def list_notifications(
        self, user_id: str, unread_only: bool = True
    ) -> list[Notification]:
        """查询用户通知"""
        async with self._stores.lock:
            return await self._stores.notification_store.list_for_user(user_id, unread_only)

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        """标记通知已读"""
        async with self._stores.lock:
            async with atomic(self._stores.conn):
                return await self._stores.notification_store.mark_read(
                    user_id, notification_id
                )
