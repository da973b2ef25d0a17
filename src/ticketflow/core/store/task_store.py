"""TaskStore SQLite 实现

同一实现服务 Task 与 TestTask 两个集合（按 TaskKind 选择表）。
嵌套子文档（blockers / comments / attachments ...）以 JSON 列存储，
整行写入即单文档保存语义；history 由 SqliteHistoryStore 单独追加。
"""

import json
from datetime import datetime
from typing import Any

import aiosqlite
from pydantic import BaseModel

from ..config import TASK_NUMBER_PREFIX, TASK_NUMBER_SEQ_WIDTH
from ..models.enums import TaskKind, TaskStatus, Urgency
from ..models.query import QueryPredicate
from ..models.task import (
    Attachment,
    Blocker,
    Comment,
    Mention,
    Task,
    TestCase,
)
from ._timefmt import from_db, to_db
from .history_store import SqliteHistoryStore

_COLUMNS = (
    "task_id",
    "number",
    "name",
    "description",
    "status",
    "urgency",
    "priority",
    "created_by",
    "assigned_to",
    "ticket_id",
    "parent_task_id",
    "subtask_ids",
    "related_task_id",
    "due_date",
    "estimated_hours",
    "actual_hours",
    "attachments",
    "blockers",
    "comments",
    "mentions",
    "status_change_dates",
    "test_environment",
    "test_coverage",
    "test_cases",
    "created_at",
    "updated_at",
)

# 创建后不可变的列
_IMMUTABLE_COLUMNS = {"task_id", "number", "created_by", "created_at"}

_SELECT = ", ".join(_COLUMNS)


def format_task_number(day: datetime, seq: int) -> str:
    """生成任务编号 TASK-YYYYMMDD-NNNN

    流水号按 (集合, 日期) 递增，至少 4 位补零。单日超过 9999 个任务时加宽为
    5 位及以上（TASK-YYYYMMDD-10000），不回绕、不截断，编号保持唯一；
    按编号解析的调用方应把最后一段视为不定长数字。
    """
    return f"{TASK_NUMBER_PREFIX}-{day:%Y%m%d}-{seq:0{TASK_NUMBER_SEQ_WIDTH}d}"


def _dump_models(items: list[BaseModel]) -> str:
    return json.dumps([item.model_dump(mode="json") for item in items], ensure_ascii=False)


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        history_store: SqliteHistoryStore,
        kind: TaskKind = TaskKind.TASK,
    ) -> None:
        self._conn = conn
        self._history = history_store
        self.kind = kind
        self._table = kind.table

    async def allocate_number(self, day: datetime) -> str:
        """分配当日下一个任务编号

        注意：此方法不自动提交事务，需与任务写入在同一事务内提交。
        """
        day_key = f"{day:%Y%m%d}"
        await self._conn.execute(
            """
            INSERT INTO number_sequences (scope, day, value) VALUES (?, ?, 1)
            ON CONFLICT(scope, day) DO UPDATE SET value = value + 1
            """,
            (self._table, day_key),
        )
        cursor = await self._conn.execute(
            "SELECT value FROM number_sequences WHERE scope = ? AND day = ?",
            (self._table, day_key),
        )
        row = await cursor.fetchone()
        return format_task_number(day, row[0])

    async def create_task(self, task: Task) -> None:
        """创建任务记录（不提交事务）"""
        values = self._task_to_row(task)
        placeholders = ", ".join("?" for _ in _COLUMNS)
        await self._conn.execute(
            f"INSERT INTO {self._table} ({_SELECT}) VALUES ({placeholders})",
            [values[col] for col in _COLUMNS],
        )

    async def save_task(self, task: Task) -> None:
        """整行覆盖写入任务（不提交事务）"""
        values = self._task_to_row(task)
        mutable = [col for col in _COLUMNS if col not in _IMMUTABLE_COLUMNS]
        assignments = ", ".join(f"{col} = ?" for col in mutable)
        await self._conn.execute(
            f"UPDATE {self._table} SET {assignments} WHERE task_id = ?",
            [values[col] for col in mutable] + [task.task_id],
        )

    async def get_task(self, task_id: str, with_history: bool = True) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            f"SELECT {_SELECT} FROM {self._table} WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        task = self._row_to_task(row)
        if with_history:
            task.history = await self._history.get_entries_for_task(task_id)
        return task

    async def get_task_by_number(self, number: str) -> Task | None:
        """根据编号查询任务"""
        cursor = await self._conn.execute(
            f"SELECT task_id FROM {self._table} WHERE number = ?",
            (number,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return await self.get_task(row[0])

    async def list_tasks(
        self,
        predicate: QueryPredicate | None = None,
        with_history: bool = False,
    ) -> list[Task]:
        """按谓词查询任务列表，按 created_at 倒序"""
        where, params = (predicate or QueryPredicate(unrestricted=True)).to_sql(self._table)
        cursor = await self._conn.execute(
            f"SELECT {_SELECT} FROM {self._table} WHERE {where} ORDER BY created_at DESC",
            params,
        )
        rows = await cursor.fetchall()
        tasks = [self._row_to_task(row) for row in rows]
        if with_history:
            await self._attach_history(tasks)
        return tasks

    async def find_testing_with_estimate(self) -> list[Task]:
        """Testing 状态且已设置 estimated_hours 的任务（含 history）"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_SELECT} FROM {self._table}
            WHERE status = ? AND estimated_hours IS NOT NULL AND estimated_hours >= 0
            """,
            (TaskStatus.TESTING.value,),
        )
        tasks = [self._row_to_task(row) for row in await cursor.fetchall()]
        await self._attach_history(tasks)
        return tasks

    async def find_overdue_todo(self, now: datetime) -> list[Task]:
        """ToDo 状态且 due_date 早于 now（UTC）的任务"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_SELECT} FROM {self._table}
            WHERE status = ? AND due_date IS NOT NULL AND due_date < ?
            """,
            (TaskStatus.TODO.value, to_db(now)),
        )
        tasks = [self._row_to_task(row) for row in await cursor.fetchall()]
        await self._attach_history(tasks)
        return tasks

    async def _attach_history(self, tasks: list[Task]) -> None:
        histories = await self._history.get_entries_for_tasks([t.task_id for t in tasks])
        for task in tasks:
            task.history = histories.get(task.task_id, [])

    def _task_to_row(self, task: Task) -> dict[str, Any]:
        return {
            "task_id": task.task_id,
            "number": task.number,
            "name": task.name,
            "description": task.description,
            "status": task.status.value,
            "urgency": Urgency(task.urgency).value,
            "priority": task.priority,
            "created_by": task.created_by,
            "assigned_to": json.dumps(task.assigned_to),
            "ticket_id": task.ticket_id,
            "parent_task_id": task.parent_task_id,
            "subtask_ids": json.dumps(task.subtask_ids),
            "related_task_id": task.related_task_id,
            "due_date": to_db(task.due_date),
            "estimated_hours": task.estimated_hours,
            "actual_hours": task.actual_hours,
            "attachments": _dump_models(task.attachments),
            "blockers": _dump_models(task.blockers),
            # author_name 为读取时回填的展示字段，不落盘
            "comments": json.dumps(
                [c.model_dump(mode="json", exclude={"author_name"}) for c in task.comments],
                ensure_ascii=False,
            ),
            "mentions": _dump_models(task.mentions),
            "status_change_dates": json.dumps(
                {key: to_db(value) for key, value in task.status_change_dates.items()}
            ),
            "test_environment": task.test_environment,
            "test_coverage": task.test_coverage,
            "test_cases": _dump_models(task.test_cases),
            "created_at": to_db(task.created_at),
            "updated_at": to_db(task.updated_at),
        }

    def _row_to_task(self, row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        data = dict(zip(_COLUMNS, row, strict=True))
        return Task(
            task_id=data["task_id"],
            kind=self.kind,
            number=data["number"],
            name=data["name"],
            description=data["description"],
            status=TaskStatus(data["status"]),
            urgency=data["urgency"],
            priority=data["priority"],
            created_by=data["created_by"],
            assigned_to=json.loads(data["assigned_to"]),
            ticket_id=data["ticket_id"],
            parent_task_id=data["parent_task_id"],
            subtask_ids=json.loads(data["subtask_ids"]),
            related_task_id=data["related_task_id"],
            due_date=from_db(data["due_date"]),
            estimated_hours=data["estimated_hours"],
            actual_hours=data["actual_hours"],
            attachments=[Attachment(**a) for a in json.loads(data["attachments"])],
            blockers=[Blocker(**b) for b in json.loads(data["blockers"])],
            comments=[Comment(**c) for c in json.loads(data["comments"])],
            mentions=[Mention(**m) for m in json.loads(data["mentions"])],
            status_change_dates={
                key: from_db(value)
                for key, value in json.loads(data["status_change_dates"]).items()
            },
            test_environment=data["test_environment"],
            test_coverage=data["test_coverage"],
            test_cases=[TestCase(**c) for c in json.loads(data["test_cases"])],
            created_at=from_db(data["created_at"]),
            updated_at=from_db(data["updated_at"]),
        )
