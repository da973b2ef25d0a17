"""structlog 配置测试"""

import json
import logging

import pytest
import structlog
from ticketflow.gateway.middleware.logging_config import setup_logfire, setup_logging


def test_json_format_renders_context(monkeypatch: pytest.MonkeyPatch, capsys):
    monkeypatch.setenv("TICKETFLOW_LOG_FORMAT", "json")
    setup_logging()

    structlog.contextvars.bind_contextvars(request_id="01REQUEST")
    try:
        structlog.get_logger("probe").info("sweep_completed", expired=2)
    finally:
        structlog.contextvars.clear_contextvars()

    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "sweep_completed"
    assert record["expired"] == 2
    assert record["request_id"] == "01REQUEST"
    assert record["level"] == "info"


def test_invalid_level_falls_back_to_info(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TICKETFLOW_LOG_LEVEL", "chatty")
    setup_logging()
    assert logging.getLogger().level == logging.INFO
    assert logging.getLogger("aiosqlite").level == logging.WARNING


def test_logfire_disabled_by_default(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("LOGFIRE_SEND_TO_LOGFIRE", raising=False)
    # 未启用时不导入 logfire，也不抛异常
    setup_logfire()
