"""服务层共用：任务加载、显示名回填、附件暂存、提交后的通知副作用

读路径与写路径共用 StoreGroup.lock：写事务未提交前，读取方看不到中间状态。
持锁区内使用 load_task，锁外使用 read_task（asyncio.Lock 不可重入）。
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import structlog
from ticketflow.core.exceptions import NotFoundError
from ticketflow.core.models import (
    Attachment,
    HistoryEntry,
    Task,
    TaskKind,
)
from ticketflow.core.store import StoreGroup, atomic
from ticketflow.core.store.attachment_store import compute_hash_and_size
from ticketflow.core.store.protocols import AttachmentStorage, NotificationService
from ticketflow.core.workflow import status_changes

from .uploads import UploadedFile

log = structlog.get_logger()


async def load_task(
    stores: StoreGroup, kind: TaskKind, task_id: str, with_history: bool = True
) -> Task:
    """加载任务（调用方需已持有 stores.lock）

    Raises:
        NotFoundError: 任务不存在
    """
    task = await stores.tasks(kind).get_task(task_id, with_history=with_history)
    if task is None:
        raise NotFoundError(kind.value, task_id)
    return task


async def read_task(
    stores: StoreGroup, kind: TaskKind, task_id: str, with_history: bool = True
) -> Task:
    """持锁加载任务，只读取已提交的状态"""
    async with stores.lock:
        return await load_task(stores, kind, task_id, with_history=with_history)


async def with_display_names(stores: StoreGroup, task: Task) -> Task:
    """回填评论作者显示名"""
    author_ids = list(dict.fromkeys(c.author for c in task.comments))
    async with stores.lock:
        users = await stores.user_store.get_users(author_ids)
    for comment in task.comments:
        author = users.get(comment.author)
        comment.author_name = author.display_name if author else ""
    return task


def store_attachments(
    storage: AttachmentStorage, task_id: str, files: list[UploadedFile], uploaded_by: str
) -> list[Attachment]:
    """写入附件文件并返回附件记录（中途失败时删除已写入的文件）"""
    now = datetime.now(UTC)
    attachments: list[Attachment] = []
    try:
        for upload in files:
            storage_ref = storage.put(task_id, upload.name, upload.content)
            attachments.append(
                Attachment(
                    name=upload.name,
                    storage_ref=storage_ref,
                    uploaded_by=uploaded_by,
                    uploaded_at=now,
                )
            )
            sha256, size = compute_hash_and_size(upload.content)
            log.info(
                "attachment_stored",
                task_id=task_id,
                storage_ref=storage_ref,
                size=size,
                sha256=sha256,
            )
    except BaseException:
        discard_attachments(storage, attachments)
        raise
    return attachments


def discard_attachments(storage: AttachmentStorage, attachments: list[Attachment]) -> None:
    """删除未被任何任务引用的附件文件"""
    for attachment in attachments:
        try:
            storage.delete(attachment.storage_ref)
        except OSError as e:
            log.warning(
                "attachment_cleanup_failed",
                storage_ref=attachment.storage_ref,
                error_type=type(e).__name__,
            )
            continue
        log.info("attachment_discarded", storage_ref=attachment.storage_ref)


@contextmanager
def staged_attachments(
    storage: AttachmentStorage, task_id: str, files: list[UploadedFile], uploaded_by: str
) -> Iterator[list[Attachment]]:
    """写入附件文件；块内抛出异常（校验失败 / 事务回滚）时删除本次写入的文件

    Usage:
        with staged_attachments(storage, task_id, files, actor_id) as attachments:
            async with atomic(conn):
                ...
    """
    attachments = store_attachments(storage, task_id, files, uploaded_by)
    try:
        yield attachments
    except BaseException:
        discard_attachments(storage, attachments)
        raise


async def notify_status_changes(
    notifier: NotificationService,
    task: Task,
    entries: list[HistoryEntry],
    changer_name: str,
) -> None:
    """对本次提交中的每条 statusChanged 记录发送通知（按记录顺序）"""
    for previous, new in status_changes(entries):
        await notifier.notify_status_change(task, previous, new, changer_name)


async def mark_mentions_notified(
    stores: StoreGroup,
    kind: TaskKind,
    task_id: str,
    user_ids: list[str],
    comment_id: str | None = None,
) -> None:
    """通知发出后将对应 mention 标记为 notified

    comment_id 为空时标记任务级 mentions，否则标记该评论的 mentions。
    """
    if not user_ids:
        return
    notified = set(user_ids)
    store = stores.tasks(kind)
    async with stores.lock:
        task = await store.get_task(task_id, with_history=False)
        if task is None:
            return
        if comment_id is None:
            mentions = task.mentions
        else:
            comment = next((c for c in task.comments if c.comment_id == comment_id), None)
            mentions = comment.mentions if comment else []
        for mention in mentions:
            if mention.user_id in notified:
                mention.notified = True
        async with atomic(stores.conn):
            await store.save_task(task)
