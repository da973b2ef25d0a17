"""CLI 测试 -- python -m ticketflow.core 子命令"""

from pathlib import Path

import pytest
from ticketflow.core.__main__ import create_user, init_database, main, run_sweep
from ticketflow.core.models import UserRole
from ticketflow.core.store import create_store_group


@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    db_path = tmp_path / "sqlite" / "cli.db"
    monkeypatch.setenv("TICKETFLOW_DB_PATH", str(db_path))
    monkeypatch.setenv("TICKETFLOW_ATTACHMENTS_DIR", str(tmp_path / "attachments"))
    return db_path


async def test_init_database(cli_env: Path):
    await init_database()
    assert cli_env.exists()


async def test_create_user_with_hierarchy(cli_env: Path, capsys):
    await create_user(
        ["Gil", "Leader", "gil@example.com", "groupLeader", "project_manager=01PM"]
    )
    assert "Gil Leader" in capsys.readouterr().out

    store_group = await create_store_group(str(cli_env), cli_env.parent / "attachments")
    try:
        [user_id] = await store_group.user_store.list_ids_by_role(UserRole.GROUP_LEADER)
        user = await store_group.user_store.get_user(user_id)
        assert user.project_manager == "01PM"
    finally:
        await store_group.conn.close()


async def test_create_user_unknown_role(cli_env: Path):
    with pytest.raises(SystemExit):
        await create_user(["Gil", "Leader", "gil@example.com", "overlord"])


async def test_run_sweep_on_empty_db(cli_env: Path, capsys):
    await run_sweep()
    assert "expired=0 overdue=0" in capsys.readouterr().out


def test_main_without_command(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr("sys.argv", ["ticketflow.core"])
    with pytest.raises(SystemExit) as exc_info:
        main()
    assert exc_info.value.code == 1
