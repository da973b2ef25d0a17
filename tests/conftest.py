"""全局 pytest 配置 -- 临时 SQLite StoreGroup + 用户/任务构造 fixture"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest_asyncio
from ticketflow.core.models import (
    CreatedDetails,
    HistoryAction,
    Task,
    TaskKind,
    Ticket,
    User,
    UserRole,
)
from ticketflow.core.notifications import SqliteNotificationService
from ticketflow.core.store import StoreGroup, atomic, create_store_group, save_task_with_history
from ticketflow.core.workflow import new_entry
from ulid import ULID

MakeUser = Callable[..., Awaitable[User]]
MakeTask = Callable[..., Awaitable[Task]]


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def tmp_attachments_dir(tmp_path: Path) -> Path:
    """提供临时附件目录"""
    return tmp_path / "attachments"


@pytest_asyncio.fixture
async def store_group(
    tmp_db_path: Path, tmp_attachments_dir: Path
) -> AsyncGenerator[StoreGroup, None]:
    """已初始化的 StoreGroup"""
    sg = await create_store_group(str(tmp_db_path), tmp_attachments_dir)
    yield sg
    await sg.conn.close()


@pytest_asyncio.fixture
async def notifier(store_group: StoreGroup) -> SqliteNotificationService:
    return SqliteNotificationService(store_group)


@pytest_asyncio.fixture
async def make_user(store_group: StoreGroup) -> MakeUser:
    """创建并持久化用户"""

    async def _make(first_name: str, last_name: str, role: UserRole, **hierarchy: Any) -> User:
        user = User(
            user_id=str(ULID()),
            first_name=first_name,
            last_name=last_name,
            email=f"{first_name}.{last_name}.{ULID()}@example.com".lower(),
            role=role,
            created_at=datetime.now(UTC),
            **hierarchy,
        )
        async with atomic(store_group.conn):
            await store_group.user_store.create_user(user)
        return user

    return _make


@pytest_asyncio.fixture
async def make_ticket(store_group: StoreGroup) -> Callable[[User], Awaitable[Ticket]]:
    """创建并持久化 ticket"""

    async def _make(creator: User) -> Ticket:
        ticket_id = str(ULID())
        ticket = Ticket(
            ticket_id=ticket_id,
            number=f"TICKET-{ticket_id[-6:]}",
            title="Client request",
            created_by=creator.user_id,
            created_at=datetime.now(UTC),
        )
        async with atomic(store_group.conn):
            await store_group.ticket_store.create_ticket(ticket)
        return ticket

    return _make


@pytest_asyncio.fixture
async def make_task(store_group: StoreGroup) -> MakeTask:
    """直接写入任务（绕过服务层），附带一条 created 记录"""

    async def _make(
        creator: User,
        *,
        kind: TaskKind = TaskKind.TASK,
        name: str = "Implement login",
        description: str = "Login page with SSO",
        created_at: datetime | None = None,
        **fields: Any,
    ) -> Task:
        now = created_at or datetime.now(UTC)
        store = store_group.tasks(kind)
        async with atomic(store_group.conn):
            number = await store.allocate_number(now)
        task = Task(
            task_id=str(ULID()),
            kind=kind,
            number=number,
            name=name,
            description=description,
            created_by=creator.user_id,
            created_at=now,
            updated_at=now,
            **fields,
        )
        entry = new_entry(
            task,
            HistoryAction.CREATED,
            creator.user_id,
            CreatedDetails(number=number).to_details(),
            now,
        )
        await save_task_with_history(
            store_group.conn, store, store_group.history_store, task, [entry], is_new=True
        )
        return task

    return _make


@pytest_asyncio.fixture
async def persist(store_group: StoreGroup) -> Callable[..., Awaitable[None]]:
    """保存已修改的任务与新增 history 记录"""

    async def _persist(task: Task, entries: list) -> None:
        await save_task_with_history(
            store_group.conn,
            store_group.tasks(task.kind),
            store_group.history_store,
            task,
            [e for e in entries if e is not None],
        )

    return _persist
