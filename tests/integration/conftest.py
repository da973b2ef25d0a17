"""集成测试共享 fixture"""

import os
from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from ticketflow.core.config import SweeperConfig
from ticketflow.core.sweeper import ExpirySweeper


@pytest_asyncio.fixture
async def integration_app(tmp_db_path, tmp_attachments_dir, store_group, notifier):
    """集成测试用 FastAPI app（扫描器不自动运行，由测试调用 tick）"""
    os.environ["TICKETFLOW_DB_PATH"] = str(tmp_db_path)
    os.environ["TICKETFLOW_ATTACHMENTS_DIR"] = str(tmp_attachments_dir)
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from ticketflow.gateway.main import create_app

    app = create_app()

    sweeper_config = SweeperConfig(enabled=False)
    app.state.store_group = store_group
    app.state.notifier = notifier
    app.state.sweeper_config = sweeper_config
    app.state.sweeper = ExpirySweeper(store_group, notifier, sweeper_config)

    yield app

    os.environ.pop("TICKETFLOW_DB_PATH", None)
    os.environ.pop("TICKETFLOW_ATTACHMENTS_DIR", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
