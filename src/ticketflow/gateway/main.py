"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + 通知服务 + 过期扫描器启停 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from ticketflow.core.config import get_attachments_dir, get_db_path, load_sweeper_config
from ticketflow.core.notifications import SqliteNotificationService
from ticketflow.core.store import create_store_group
from ticketflow.core.sweeper import ExpirySweeper

from .errors import register_exception_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import blockers, comments, health, notifications, tasks

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 Store 与扫描器，关闭时停止扫描器并关闭连接"""
    store_group = await create_store_group(get_db_path(), get_attachments_dir())
    app.state.store_group = store_group

    notifier = SqliteNotificationService(store_group)
    app.state.notifier = notifier

    sweeper_config = load_sweeper_config()
    app.state.sweeper_config = sweeper_config
    sweeper = ExpirySweeper(store_group, notifier, sweeper_config)
    app.state.sweeper = sweeper
    if sweeper_config.enabled:
        await sweeper.start()
    else:
        log.info("sweeper_disabled")

    yield

    await sweeper.stop()
    await store_group.conn.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="ticketflow",
        version="0.1.0",
        description="Ticket / Task / TestTask 工作流 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire()

    register_exception_handlers(app)

    # /api/notifications 需先于 /api/{collection} 注册
    app.include_router(health.router, tags=["health"])
    app.include_router(notifications.router, tags=["notifications"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(blockers.router, tags=["blockers"])
    app.include_router(comments.router, tags=["comments"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
