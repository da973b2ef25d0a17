"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
Task 与 TestTask 结构相同，分别落在 tasks / test_tasks 两张表。
使用 aiosqlite 异步操作。
"""

import aiosqlite

_USERS_DDL = """
CREATE TABLE IF NOT EXISTS users (
    user_id             TEXT PRIMARY KEY,
    first_name          TEXT NOT NULL,
    last_name           TEXT NOT NULL,
    email               TEXT NOT NULL UNIQUE,
    role                TEXT NOT NULL,
    project_manager     TEXT,
    group_leader        TEXT,
    responsible_tester  TEXT,
    created_at          TEXT NOT NULL
);
"""

_USERS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);",
    "CREATE INDEX IF NOT EXISTS idx_users_project_manager ON users(project_manager);",
]

_TICKETS_DDL = """
CREATE TABLE IF NOT EXISTS tickets (
    ticket_id   TEXT PRIMARY KEY,
    number      TEXT NOT NULL UNIQUE,
    title       TEXT NOT NULL DEFAULT '',
    status      TEXT NOT NULL DEFAULT 'Registered',
    created_by  TEXT NOT NULL,
    created_at  TEXT NOT NULL
);
"""

# tasks / test_tasks 共用 DDL 模板
_TASK_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    task_id             TEXT PRIMARY KEY,
    number              TEXT NOT NULL UNIQUE,
    name                TEXT NOT NULL,
    description         TEXT NOT NULL,
    status              TEXT NOT NULL DEFAULT 'ToDo',
    urgency             TEXT NOT NULL DEFAULT 'Medium',
    priority            INTEGER NOT NULL DEFAULT 3,
    created_by          TEXT NOT NULL,
    assigned_to         TEXT NOT NULL DEFAULT '[]',
    ticket_id           TEXT,
    parent_task_id      TEXT,
    subtask_ids         TEXT NOT NULL DEFAULT '[]',
    related_task_id     TEXT,
    due_date            TEXT,
    estimated_hours     REAL,
    actual_hours        REAL,
    attachments         TEXT NOT NULL DEFAULT '[]',
    blockers            TEXT NOT NULL DEFAULT '[]',
    comments            TEXT NOT NULL DEFAULT '[]',
    mentions            TEXT NOT NULL DEFAULT '[]',
    status_change_dates TEXT NOT NULL DEFAULT '{{}}',
    test_environment    TEXT,
    test_coverage       REAL,
    test_cases          TEXT NOT NULL DEFAULT '[]',
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);
"""

_TASK_TABLE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_{table}_status ON {table}(status);",
    "CREATE INDEX IF NOT EXISTS idx_{table}_created_by ON {table}(created_by);",
    "CREATE INDEX IF NOT EXISTS idx_{table}_ticket_id ON {table}(ticket_id);",
    "CREATE INDEX IF NOT EXISTS idx_{table}_parent ON {table}(parent_task_id);",
    "CREATE INDEX IF NOT EXISTS idx_{table}_created_at ON {table}(created_at DESC);",
]

TASK_TABLES = ("tasks", "test_tasks")

# history 表 append-only：只允许插入，不允许更新或删除
_HISTORY_DDL = """
CREATE TABLE IF NOT EXISTS task_history (
    entry_id      TEXT PRIMARY KEY,
    task_id       TEXT NOT NULL,
    seq           INTEGER NOT NULL,
    action        TEXT NOT NULL,
    performed_by  TEXT,
    ts            TEXT NOT NULL,
    details       TEXT NOT NULL DEFAULT '{}'
);
"""

_HISTORY_INDEXES = [
    # 任务内序号唯一约束（确保 seq 严格单调递增）
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_history_task_seq ON task_history(task_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_history_task_action ON task_history(task_id, action);",
]

_NOTIFICATIONS_DDL = """
CREATE TABLE IF NOT EXISTS notifications (
    notification_id  TEXT PRIMARY KEY,
    user_id          TEXT NOT NULL,
    message          TEXT NOT NULL,
    related_id       TEXT,
    related_type     TEXT NOT NULL DEFAULT 'Task',
    is_read          INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT NOT NULL
);
"""

_NOTIFICATIONS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, is_read);",
]

# 任务编号按 (集合, 日期) 分配流水号
_NUMBER_SEQUENCES_DDL = """
CREATE TABLE IF NOT EXISTS number_sequences (
    scope  TEXT NOT NULL,
    day    TEXT NOT NULL,
    value  INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (scope, day)
);
"""


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_USERS_DDL)
    await conn.execute(_TICKETS_DDL)
    for table in TASK_TABLES:
        await conn.execute(_TASK_TABLE_DDL.format(table=table))
    await conn.execute(_HISTORY_DDL)
    await conn.execute(_NOTIFICATIONS_DDL)
    await conn.execute(_NUMBER_SEQUENCES_DDL)

    # 创建索引
    task_indexes = [
        idx.format(table=table) for table in TASK_TABLES for idx in _TASK_TABLE_INDEXES
    ]
    for idx_sql in _USERS_INDEXES + task_indexes + _HISTORY_INDEXES + _NOTIFICATIONS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
