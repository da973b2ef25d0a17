"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出（异常堆栈渲染为字段）
Logfire APM：LOGFIRE_SEND_TO_LOGFIRE 环境变量控制，false 时降级为纯本地日志。
"""

import logging
import os

import structlog

# 第三方库日志默认只保留 WARNING 以上
_QUIET_LOGGERS = ("aiosqlite", "multipart", "python_multipart")


def _resolve_level(value: str) -> int:
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> None:
    """初始化 structlog 配置

    环境变量:
        TICKETFLOW_LOG_FORMAT: "json" 结构化输出；"dev"（默认）可读输出
        TICKETFLOW_LOG_LEVEL: 日志级别（默认 INFO，非法值回退 INFO）
    """
    log_format = os.environ.get("TICKETFLOW_LOG_FORMAT", "dev")
    log_level = os.environ.get("TICKETFLOW_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer_chain: list[structlog.types.Processor]
    if log_format == "json":
        renderer_chain = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        renderer_chain = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *renderer_chain,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(_resolve_level(log_level))
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if _resolve_level(log_level) == logging.INFO and log_level.upper() != "INFO":
        structlog.get_logger().warning(
            "invalid_log_level_config",
            env_var="TICKETFLOW_LOG_LEVEL",
            value=log_level,
            fallback="INFO",
        )


def setup_logfire() -> None:
    """Logfire 可选初始化

    LOGFIRE_SEND_TO_LOGFIRE="true" 时启用（需要 LOGFIRE_TOKEN 与 observability extra），
    默认关闭。初始化失败只记录警告。
    """
    send_to_logfire = os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower()
    if send_to_logfire != "true":
        return
    try:
        import logfire

        logfire.configure()
        logfire.instrument_fastapi()
    except Exception as e:
        structlog.get_logger().warning(
            "logfire_init_failed",
            error_type=type(e).__name__,
            message="Logfire 初始化失败，降级为纯本地日志",
        )
