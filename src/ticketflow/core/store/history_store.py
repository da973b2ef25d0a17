"""HistoryStore SQLite 实现

history 表 append-only：只允许插入，不允许更新或删除。
seq 同一 task 内严格单调递增。
"""

import json

import aiosqlite

from ..models.enums import HistoryAction
from ..models.task import HistoryEntry
from ._timefmt import from_db, to_db

_COLUMNS = "entry_id, task_id, seq, action, performed_by, ts, details"


class SqliteHistoryStore:
    """HistoryStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_entry(self, entry: HistoryEntry) -> None:
        """追加 history 记录（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            f"""
            INSERT INTO task_history ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.entry_id,
                entry.task_id,
                entry.seq,
                entry.action.value,
                entry.performed_by,
                to_db(entry.timestamp),
                json.dumps(entry.details, ensure_ascii=False),
            ),
        )

    async def get_entries_for_task(self, task_id: str) -> list[HistoryEntry]:
        """查询指定任务的所有 history 记录，按 seq 正序"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM task_history WHERE task_id = ? ORDER BY seq ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def get_entries_for_tasks(
        self, task_ids: list[str]
    ) -> dict[str, list[HistoryEntry]]:
        """批量查询多个任务的 history 记录"""
        result: dict[str, list[HistoryEntry]] = {task_id: [] for task_id in task_ids}
        if not task_ids:
            return result
        placeholders = ", ".join("?" for _ in task_ids)
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM task_history
            WHERE task_id IN ({placeholders})
            ORDER BY task_id, seq ASC
            """,
            task_ids,
        )
        for row in await cursor.fetchall():
            entry = self._row_to_entry(row)
            result[entry.task_id].append(entry)
        return result

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> HistoryEntry:
        """将数据库行转换为 HistoryEntry 模型"""
        details = json.loads(row[6]) if row[6] else {}
        return HistoryEntry(
            entry_id=row[0],
            task_id=row[1],
            seq=row[2],
            action=HistoryAction(row[3]),
            performed_by=row[4],
            timestamp=from_db(row[5]),
            details=details,
        )
