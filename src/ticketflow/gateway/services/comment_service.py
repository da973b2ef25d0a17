"""CommentService -- 评论与 @提及

提及来源：
1. 文本中的 @name 标记（由通知协作方按 firstName + lastName 解析）
2. 调用方显式提供的 user_id 列表
两者合并去重后，每个被提及用户只记录一次、只收到一条通知。
"""

from datetime import UTC, datetime

import structlog
from ticketflow.core.access import ensure_can_modify
from ticketflow.core.exceptions import ValidationError
from ticketflow.core.models import (
    Actor,
    Comment,
    CommentedDetails,
    FileDescriptor,
    HistoryAction,
    Mention,
    Task,
    TaskKind,
)
from ticketflow.core.notifications import (
    SqliteNotificationService,
    comment_mention_message,
    related_type_for,
)
from ticketflow.core.store import StoreGroup, save_task_with_history
from ticketflow.core.workflow import new_entry
from ulid import ULID

from .common import (
    load_task,
    mark_mentions_notified,
    read_task,
    staged_attachments,
    with_display_names,
)
from .uploads import UploadedFile

log = structlog.get_logger()


class CommentService:
    """评论业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        notifier: SqliteNotificationService,
    ) -> None:
        self._stores = store_group
        self._notifier = notifier

    async def resolve_mentions(self, text: str, explicit_mentions: list[str]) -> list[str]:
        """合并文本 @提及与显式提及（去重，丢弃不存在的用户）"""
        inline_ids = await self._notifier.find_users_by_mentions(
            self._notifier.extract_mentions(text)
        )
        candidates = list(dict.fromkeys([*inline_ids, *explicit_mentions]))
        if not candidates:
            return []
        users = await self._stores.user_store.get_users(candidates)
        unknown = [u for u in candidates if u not in users]
        if unknown:
            log.warning("mentions_unknown_users_dropped", user_ids=unknown)
        return [u for u in candidates if u in users]

    async def add_comment(
        self,
        kind: TaskKind,
        task_id: str,
        actor: Actor,
        text: str,
        explicit_mentions: list[str] | None = None,
        files: list[UploadedFile] | None = None,
    ) -> Task:
        """添加评论

        Returns:
            重新加载的任务（评论作者显示名已回填）

        Raises:
            NotFoundError: 任务不存在
            AuthorizationError: 非特权角色且无任务访问权限
            ValidationError: 评论内容为空
        """
        # 锁外解析提及（只读查询）
        mention_ids = await self.resolve_mentions(text or "", explicit_mentions or [])

        now = datetime.now(UTC)
        store = self._stores.tasks(kind)
        async with self._stores.lock:
            task = await load_task(self._stores, kind, task_id)
            ensure_can_modify(actor, task)
            if not text or not text.strip():
                raise ValidationError("Comment text is required", field="text")

            with staged_attachments(
                self._stores.attachment_store, task_id, files or [], actor.user_id
            ) as attachments:
                comment = Comment(
                    comment_id=str(ULID()),
                    text=text,
                    author=actor.user_id,
                    created_at=now,
                    files=[
                        FileDescriptor(name=a.name, storage_ref=a.storage_ref)
                        for a in attachments
                    ],
                )
                for user_id in mention_ids:
                    if all(m.user_id != user_id for m in comment.mentions):
                        comment.mentions.append(Mention(user_id=user_id))

                task.comments.append(comment)
                task.updated_at = now
                entry = new_entry(
                    task,
                    HistoryAction.COMMENTED,
                    actor.user_id,
                    CommentedDetails(
                        comment_id=comment.comment_id,
                        mentions=[m.user_id for m in comment.mentions],
                    ).to_details(),
                    now,
                )
                await save_task_with_history(
                    self._stores.conn, store, self._stores.history_store, task, [entry]
                )

        log.info(
            "comment_added",
            task_id=task_id,
            comment_id=comment.comment_id,
            mention_count=len(comment.mentions),
            file_count=len(comment.files),
        )

        notified = [m.user_id for m in comment.mentions if not m.notified]
        if notified:
            await self._notifier.create_notifications(
                notified,
                comment_mention_message(actor.name, task.name),
                task_id,
                related_type_for(task),
            )
            await mark_mentions_notified(
                self._stores, kind, task_id, notified, comment_id=comment.comment_id
            )

        # 写后读：返回最新持久化状态
        fresh = await read_task(self._stores, kind, task_id)
        return await with_display_names(self._stores, fresh)
