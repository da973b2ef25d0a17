"""NotificationStore SQLite 实现"""

import aiosqlite

from ..models.enums import RelatedEntityType
from ..models.notification import Notification
from ._timefmt import from_db, to_db

_COLUMNS = "notification_id, user_id, message, related_id, related_type, is_read, created_at"


class SqliteNotificationStore:
    """NotificationStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def add_notifications(self, notifications: list[Notification]) -> None:
        """批量写入通知（不提交事务）"""
        await self._conn.executemany(
            f"INSERT INTO notifications ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                (
                    n.notification_id,
                    n.user_id,
                    n.message,
                    n.related_id,
                    n.related_type.value,
                    int(n.is_read),
                    to_db(n.created_at),
                )
                for n in notifications
            ],
        )

    async def list_for_user(
        self, user_id: str, unread_only: bool = False
    ) -> list[Notification]:
        """查询用户通知，按 created_at 倒序"""
        sql = f"SELECT {_COLUMNS} FROM notifications WHERE user_id = ?"
        if unread_only:
            sql += " AND is_read = 0"
        sql += " ORDER BY created_at DESC, notification_id DESC"
        cursor = await self._conn.execute(sql, (user_id,))
        return [self._row_to_notification(row) for row in await cursor.fetchall()]

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        """标记通知已读（不提交事务）

        Returns:
            True 如果找到并更新了通知
        """
        cursor = await self._conn.execute(
            "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND notification_id = ?",
            (user_id, notification_id),
        )
        return cursor.rowcount > 0

    @staticmethod
    def _row_to_notification(row: aiosqlite.Row) -> Notification:
        return Notification(
            notification_id=row[0],
            user_id=row[1],
            message=row[2],
            related_id=row[3],
            related_type=RelatedEntityType(row[4]),
            is_read=bool(row[5]),
            created_at=from_db(row[6]),
        )
