"""任务 + history 原子事务封装

在同一 SQLite 事务内原子提交 history 追加与任务整行写入：
要么状态、子文档与 history 全部落盘，要么全部回滚。
"""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

import aiosqlite
import structlog

from ..exceptions import PersistenceError
from ..models.task import HistoryEntry, Task
from .protocols import HistoryStore
from .task_store import SqliteTaskStore

log = structlog.get_logger()


@asynccontextmanager
async def atomic(conn: aiosqlite.Connection) -> AsyncIterator[None]:
    """事务上下文：正常退出提交，异常回滚

    Raises:
        PersistenceError: 底层存储失败（已回滚）
    """
    try:
        yield
        await conn.commit()
    except aiosqlite.Error as e:
        await conn.rollback()
        log.error("transaction_rolled_back", error_type=type(e).__name__)
        raise PersistenceError("Storage operation failed", original_error=e) from e
    except BaseException:
        await conn.rollback()
        raise


async def write_task_with_history(
    task_store: SqliteTaskStore,
    history_store: HistoryStore,
    task: Task,
    entries: Sequence[HistoryEntry] = (),
    is_new: bool = False,
) -> None:
    """写入任务与新增 history 记录（不提交事务，需在 atomic 内调用）"""
    if is_new:
        await task_store.create_task(task)
    else:
        await task_store.save_task(task)
    for entry in entries:
        await history_store.append_entry(entry)


async def save_task_with_history(
    conn: aiosqlite.Connection,
    task_store: SqliteTaskStore,
    history_store: HistoryStore,
    task: Task,
    entries: Sequence[HistoryEntry] = (),
    is_new: bool = False,
) -> None:
    """在同一事务内原子提交任务写入与 history 追加

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        task_store: 任务所属集合的 TaskStore
        history_store: HistoryStore 实例
        task: 要写入的任务
        entries: 本次新增的 history 记录
        is_new: True 时插入新任务，否则整行覆盖

    Raises:
        PersistenceError: 如果事务提交失败，自动回滚
    """
    async with atomic(conn):
        await write_task_with_history(task_store, history_store, task, entries, is_new)
