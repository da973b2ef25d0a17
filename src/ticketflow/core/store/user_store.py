"""UserStore SQLite 实现 -- 用户与组织层级查询"""

import aiosqlite

from ..models.enums import UserRole
from ..models.user import User
from ._timefmt import from_db, to_db

_COLUMNS = (
    "user_id, first_name, last_name, email, role, "
    "project_manager, group_leader, responsible_tester, created_at"
)


class SqliteUserStore:
    """UserStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_user(self, user: User) -> None:
        """创建用户记录（不提交事务）"""
        await self._conn.execute(
            f"INSERT INTO users ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                user.user_id,
                user.first_name,
                user.last_name,
                user.email,
                user.role.value,
                user.project_manager,
                user.group_leader,
                user.responsible_tester,
                to_db(user.created_at),
            ),
        )

    async def get_user(self, user_id: str) -> User | None:
        """根据 user_id 查询用户"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM users WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_user(row) if row else None

    async def get_users(self, user_ids: list[str]) -> dict[str, User]:
        """批量查询用户，返回 user_id -> User"""
        if not user_ids:
            return {}
        placeholders = ", ".join("?" for _ in user_ids)
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM users WHERE user_id IN ({placeholders})",
            list(user_ids),
        )
        users = [self._row_to_user(row) for row in await cursor.fetchall()]
        return {user.user_id: user for user in users}

    async def list_ids_by_role(self, role: UserRole) -> list[str]:
        """查询指定角色的全部 user_id"""
        cursor = await self._conn.execute(
            "SELECT user_id FROM users WHERE role = ? ORDER BY created_at",
            (role.value,),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def list_ids_managed_by(self, project_manager_id: str) -> list[str]:
        """查询 project_manager 回指为指定用户的全部 user_id"""
        cursor = await self._conn.execute(
            "SELECT user_id FROM users WHERE project_manager = ?",
            (project_manager_id,),
        )
        return [row[0] for row in await cursor.fetchall()]

    async def find_ids_by_handles(self, handles: list[str]) -> list[str]:
        """按 @提及名称（firstName + lastName 拼接）查询 user_id"""
        if not handles:
            return []
        placeholders = ", ".join("?" for _ in handles)
        cursor = await self._conn.execute(
            f"""
            SELECT user_id FROM users
            WHERE first_name || last_name IN ({placeholders})
            ORDER BY created_at
            """,
            list(handles),
        )
        return [row[0] for row in await cursor.fetchall()]

    @staticmethod
    def _row_to_user(row: aiosqlite.Row) -> User:
        """将数据库行转换为 User 模型"""
        return User(
            user_id=row[0],
            first_name=row[1],
            last_name=row[2],
            email=row[3],
            role=UserRole(row[4]),
            project_manager=row[5],
            group_leader=row[6],
            responsible_tester=row[7],
            created_at=from_db(row[8]),
        )
