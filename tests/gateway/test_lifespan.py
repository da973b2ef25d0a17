"""FastAPI lifespan 测试

测试内容：
1. 启动时初始化 StoreGroup / 通知服务 / 扫描器
2. 扫描器按配置启动或保持停止
3. 关闭时停止扫描器
"""

from pathlib import Path

import pytest
from ticketflow.gateway.main import create_app


@pytest.fixture
def lifespan_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("TICKETFLOW_DB_PATH", str(tmp_path / "sqlite" / "lifespan.db"))
    monkeypatch.setenv("TICKETFLOW_ATTACHMENTS_DIR", str(tmp_path / "attachments"))
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    return tmp_path


class TestLifespan:
    async def test_startup_initializes_state(self, lifespan_env: Path, monkeypatch):
        monkeypatch.setenv("TICKETFLOW_SWEEP_INTERVAL_S", "60")
        app = create_app()

        async with app.router.lifespan_context(app):
            assert app.state.store_group.conn is not None
            assert app.state.notifier is not None
            assert app.state.sweeper_config.interval_s == 60
            assert app.state.sweeper.is_running() is True
            sweeper = app.state.sweeper

        assert sweeper.is_running() is False
        assert (lifespan_env / "sqlite" / "lifespan.db").exists()
        assert (lifespan_env / "attachments").is_dir()

    async def test_sweeper_disabled(self, lifespan_env: Path, monkeypatch):
        monkeypatch.setenv("TICKETFLOW_SWEEP_ENABLED", "false")
        app = create_app()

        async with app.router.lifespan_context(app):
            assert app.state.sweeper.is_running() is False
