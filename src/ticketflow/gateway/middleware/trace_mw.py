"""TraceMiddleware -- 为任务操作绑定 trace_id

从 /api/tasks/{task_id}/... 或 /api/test-tasks/{task_id}/... 路径提取 task_id。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_TASK_COLLECTIONS = ("tasks", "test-tasks")

# ULID 字符串长度
_ULID_LENGTH = 26


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        parts = request.url.path.strip("/").split("/")
        trace_id = None
        for i, part in enumerate(parts[:-1]):
            if part in _TASK_COLLECTIONS and len(parts[i + 1]) == _ULID_LENGTH:
                trace_id = f"trace-{parts[i + 1]}"
                break

        if trace_id:
            structlog.contextvars.bind_contextvars(trace_id=trace_id)

        return await call_next(request)
