"""ticketflow Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

import asyncio
from pathlib import Path

import aiosqlite

from ..models.enums import TaskKind
from .attachment_store import LocalAttachmentStore
from .history_store import SqliteHistoryStore
from .notification_store import SqliteNotificationStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore, format_task_number
from .ticket_store import SqliteTicketStore
from .transaction import atomic, save_task_with_history, write_task_with_history
from .user_store import SqliteUserStore


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接

    lock 串行化同一连接上的读-改-写、事务以及所有读取：共享连接上未提交的
    写入对同连接的读取可见，读取方必须持锁才能只看到已提交的状态。
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        attachments_dir: Path,
    ) -> None:
        self.conn = conn
        self.lock = asyncio.Lock()
        self.history_store = SqliteHistoryStore(conn)
        self.task_stores = {
            kind: SqliteTaskStore(conn, self.history_store, kind) for kind in TaskKind
        }
        self.user_store = SqliteUserStore(conn)
        self.ticket_store = SqliteTicketStore(conn)
        self.notification_store = SqliteNotificationStore(conn)
        self.attachment_store = LocalAttachmentStore(attachments_dir)

    def tasks(self, kind: TaskKind) -> SqliteTaskStore:
        """获取指定集合的 TaskStore"""
        return self.task_stores[kind]


async def create_store_group(
    db_path: str,
    attachments_dir: str | Path,
) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径
        attachments_dir: 附件文件存储目录

    Returns:
        StoreGroup 实例
    """
    attachments_path = Path(attachments_dir)
    attachments_path.mkdir(parents=True, exist_ok=True)

    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn, attachments_dir=attachments_path)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteTaskStore",
    "SqliteHistoryStore",
    "SqliteUserStore",
    "SqliteTicketStore",
    "SqliteNotificationStore",
    "LocalAttachmentStore",
    "format_task_number",
    "init_db",
    "atomic",
    "save_task_with_history",
    "write_task_with_history",
]
