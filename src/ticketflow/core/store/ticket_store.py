"""TicketStore SQLite 实现 -- 仅提供任务关联所需的读写"""

import aiosqlite

from ..models.ticket import Ticket
from ._timefmt import from_db, to_db


class SqliteTicketStore:
    """TicketStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_ticket(self, ticket: Ticket) -> None:
        """创建 Ticket 记录（不提交事务）"""
        await self._conn.execute(
            """
            INSERT INTO tickets (ticket_id, number, title, status, created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                ticket.ticket_id,
                ticket.number,
                ticket.title,
                ticket.status,
                ticket.created_by,
                to_db(ticket.created_at),
            ),
        )

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        """根据 ticket_id 查询 Ticket"""
        cursor = await self._conn.execute(
            """
            SELECT ticket_id, number, title, status, created_by, created_at
            FROM tickets WHERE ticket_id = ?
            """,
            (ticket_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Ticket(
            ticket_id=row[0],
            number=row[1],
            title=row[2],
            status=row[3],
            created_by=row[4],
            created_at=from_db(row[5]),
        )
