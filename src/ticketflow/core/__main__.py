"""CLI 入口模块 -- python -m ticketflow.core <command>

支持的命令：
  init-db                                   初始化数据库表结构
  create-user <first> <last> <email> <role> [project_manager=ID] [group_leader=ID]
              [responsible_tester=ID]       创建用户
  sweep                                     执行一轮过期扫描
"""

import asyncio
import sys
from datetime import UTC, datetime

from ulid import ULID

from .config import get_attachments_dir, get_db_path

_USAGE = """用法: python -m ticketflow.core <command>
命令:
  init-db      初始化数据库表结构
  create-user  <first> <last> <email> <role> [project_manager=ID] [group_leader=ID] [responsible_tester=ID]
  sweep        执行一轮过期扫描"""

_HIERARCHY_OPTIONS = ("project_manager", "group_leader", "responsible_tester")


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "create-user":
        if len(sys.argv) < 6:
            print(_USAGE)
            sys.exit(1)
        asyncio.run(create_user(sys.argv[2:]))
    elif command == "sweep":
        asyncio.run(run_sweep())
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, create-user, sweep")
        sys.exit(1)


async def init_database() -> None:
    """初始化数据库（create_store_group 内部执行 DDL）"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path, get_attachments_dir())
    await store_group.conn.close()
    print("初始化完成")


async def create_user(args: list[str]) -> None:
    """创建用户"""
    from .models import User, UserRole
    from .store import atomic, create_store_group

    first_name, last_name, email, role_value, *options = args
    try:
        role = UserRole(role_value)
    except ValueError:
        print(f"未知角色: {role_value}")
        print("可用角色: " + ", ".join(r.value for r in UserRole))
        sys.exit(1)

    hierarchy: dict[str, str] = {}
    for option in options:
        key, _, value = option.partition("=")
        if key not in _HIERARCHY_OPTIONS or not value:
            print(f"无效参数: {option}")
            sys.exit(1)
        hierarchy[key] = value

    user = User(
        user_id=str(ULID()),
        first_name=first_name,
        last_name=last_name,
        email=email,
        role=role,
        created_at=datetime.now(UTC),
        **hierarchy,
    )

    store_group = await create_store_group(get_db_path(), get_attachments_dir())
    try:
        async with atomic(store_group.conn):
            await store_group.user_store.create_user(user)
        print(f"用户已创建: {user.user_id} ({user.display_name}, {role.value})")
    finally:
        await store_group.conn.close()


async def run_sweep() -> None:
    """执行一轮过期扫描"""
    from .notifications import SqliteNotificationService
    from .store import create_store_group
    from .sweeper import ExpirySweeper

    store_group = await create_store_group(get_db_path(), get_attachments_dir())
    try:
        sweeper = ExpirySweeper(store_group, SqliteNotificationService(store_group))
        result = await sweeper.tick()
        print(
            f"扫描完成: expired={result.expired} overdue={result.overdue} "
            f"skipped={result.skipped} failed={result.failed}"
        )
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
