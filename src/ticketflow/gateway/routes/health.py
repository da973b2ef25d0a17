"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、附件目录、磁盘空间、扫描器状态。
"""

import shutil

import aiosqlite
import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. attachments_dir: 附件目录可访问性
    3. disk_space_mb: 磁盘剩余空间（附件目录所在分区）
    4. sweeper: running / stopped / disabled（不影响就绪判定）
    """
    checks: dict[str, object] = {}
    all_ok = True
    store_group = request.app.state.store_group

    try:
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except (aiosqlite.Error, ValueError) as e:
        log.warning("readiness_sqlite_failed", error=str(e))
        checks["sqlite"] = f"error: {e}"
        all_ok = False

    attachments_root = store_group.attachment_store.root
    if attachments_root.is_dir():
        checks["attachments_dir"] = "ok"
    else:
        checks["attachments_dir"] = "error: directory does not exist"
        all_ok = False

    try:
        disk_usage = shutil.disk_usage(attachments_root if attachments_root.exists() else "/")
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except OSError:
        checks["disk_space_mb"] = 0
        all_ok = False

    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is None or not request.app.state.sweeper_config.enabled:
        checks["sweeper"] = "disabled"
    else:
        checks["sweeper"] = "running" if sweeper.is_running() else "stopped"

    status_code = 200 if all_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
