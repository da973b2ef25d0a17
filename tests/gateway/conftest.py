"""gateway 测试配置 -- FastAPI app（绕过 lifespan）+ httpx AsyncClient + 服务实例"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from ticketflow.core.config import SweeperConfig
from ticketflow.core.notifications import SqliteNotificationService
from ticketflow.core.store import StoreGroup
from ticketflow.core.sweeper import ExpirySweeper
from ticketflow.gateway.services.blocker_service import BlockerService
from ticketflow.gateway.services.comment_service import CommentService
from ticketflow.gateway.services.task_service import TaskService

_ENV_KEYS = ["TICKETFLOW_DB_PATH", "TICKETFLOW_ATTACHMENTS_DIR", "LOGFIRE_SEND_TO_LOGFIRE"]


@pytest_asyncio.fixture
async def test_app(
    tmp_db_path: Path,
    tmp_attachments_dir: Path,
    store_group: StoreGroup,
    notifier: SqliteNotificationService,
):
    os.environ["TICKETFLOW_DB_PATH"] = str(tmp_db_path)
    os.environ["TICKETFLOW_ATTACHMENTS_DIR"] = str(tmp_attachments_dir)
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from ticketflow.gateway.main import create_app

    app = create_app()

    # 手动初始化（绕过 lifespan），扫描器不启动
    sweeper_config = SweeperConfig(enabled=False)
    app.state.store_group = store_group
    app.state.notifier = notifier
    app.state.sweeper_config = sweeper_config
    app.state.sweeper = ExpirySweeper(store_group, notifier, sweeper_config)

    yield app

    for key in _ENV_KEYS:
        os.environ.pop(key, None)


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def task_service(store_group, notifier) -> TaskService:
    return TaskService(store_group, notifier)


@pytest_asyncio.fixture
async def blocker_service(store_group, notifier) -> BlockerService:
    return BlockerService(store_group, notifier)


@pytest_asyncio.fixture
async def comment_service(store_group, notifier) -> CommentService:
    return CommentService(store_group, notifier)
