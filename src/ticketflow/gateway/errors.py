"""异常 → HTTP 响应映射

响应体统一为 {"error": {"code": ..., "message": ...}}：
- NotFoundError       → 404
- ValidationError     → 422（含请求体校验失败）
- AuthorizationError  → 403
- UnauthenticatedError → 401
- PersistenceError    → 500（不暴露底层错误）
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse
from ticketflow.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PersistenceError,
    TicketflowError,
    ValidationError,
)

log = structlog.get_logger()


class UnauthenticatedError(TicketflowError):
    """请求未携带有效的用户身份"""

    code = "UNAUTHENTICATED"


_STATUS_CODES: dict[type[TicketflowError], int] = {
    NotFoundError: 404,
    ValidationError: 422,
    AuthorizationError: 403,
    UnauthenticatedError: 401,
    PersistenceError: 500,
}


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


async def _handle_ticketflow_error(request: Request, exc: TicketflowError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)),
        500,
    )
    if status_code >= 500:
        log.error("request_failed", error_code=exc.code, error_type=type(exc).__name__)
        return error_response(status_code, exc.code, "Internal storage error")
    return error_response(status_code, exc.code, exc.message)


async def _handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()))
    message = first.get("msg", "Invalid request")
    return error_response(
        422,
        ValidationError.code,
        f"{location}: {message}" if location else message,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """注册异常处理器"""
    app.add_exception_handler(TicketflowError, _handle_ticketflow_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
