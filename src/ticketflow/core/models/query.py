"""QueryPredicate -- 角色范围数据访问谓词

语义：unrestricted OR (created_by ∈ A OR assigned_to ∩ B ≠ ∅ OR status ∈ C)，
再与调用方附加条件（status / ticket_id / parent_task_id）AND 组合。
同一谓词既可渲染为 SQL，也可在内存中求值。
"""

from typing import Any

from pydantic import BaseModel, Field

from .enums import TaskStatus
from .task import Task


class QueryPredicate(BaseModel):
    """任务查询谓词"""

    unrestricted: bool = Field(default=False, description="匹配全部任务")
    created_by: list[str] = Field(default_factory=list)
    assigned_to: list[str] = Field(default_factory=list)
    statuses: list[TaskStatus] = Field(default_factory=list)

    # AND 组合条件
    status: TaskStatus | None = None
    ticket_id: str | None = None
    parent_task_id: str | None = None

    def combine(
        self,
        *,
        status: TaskStatus | None = None,
        ticket_id: str | None = None,
        parent_task_id: str | None = None,
    ) -> "QueryPredicate":
        """AND 组合调用方附加条件，返回新谓词"""
        update: dict[str, Any] = {}
        if status is not None:
            update["status"] = status
        if ticket_id is not None:
            update["ticket_id"] = ticket_id
        if parent_task_id is not None:
            update["parent_task_id"] = parent_task_id
        return self.model_copy(update=update)

    def matches(self, task: Task) -> bool:
        """内存求值"""
        if not self.unrestricted:
            in_scope = (
                task.created_by in self.created_by
                or any(user_id in self.assigned_to for user_id in task.assigned_to)
                or task.status in self.statuses
            )
            if not in_scope:
                return False
        if self.status is not None and task.status != self.status:
            return False
        if self.ticket_id is not None and task.ticket_id != self.ticket_id:
            return False
        if self.parent_task_id is not None and task.parent_task_id != self.parent_task_id:
            return False
        return True

    def to_sql(self, table: str) -> tuple[str, list[Any]]:
        """渲染为 WHERE 子句

        Returns:
            (where_sql, params)
        """
        clauses: list[str] = []
        params: list[Any] = []

        if not self.unrestricted:
            any_of: list[str] = []
            if self.created_by:
                any_of.append(f"{table}.created_by IN ({_placeholders(self.created_by)})")
                params.extend(self.created_by)
            if self.assigned_to:
                any_of.append(
                    f"EXISTS (SELECT 1 FROM json_each({table}.assigned_to) "
                    f"WHERE json_each.value IN ({_placeholders(self.assigned_to)}))"
                )
                params.extend(self.assigned_to)
            if self.statuses:
                any_of.append(f"{table}.status IN ({_placeholders(self.statuses)})")
                params.extend(s.value for s in self.statuses)
            # 空范围不匹配任何任务
            clauses.append("(" + " OR ".join(any_of) + ")" if any_of else "0")

        if self.status is not None:
            clauses.append(f"{table}.status = ?")
            params.append(self.status.value)
        if self.ticket_id is not None:
            clauses.append(f"{table}.ticket_id = ?")
            params.append(self.ticket_id)
        if self.parent_task_id is not None:
            clauses.append(f"{table}.parent_task_id = ?")
            params.append(self.parent_task_id)

        return (" AND ".join(clauses) if clauses else "1"), params


def _placeholders(values: list[Any]) -> str:
    return ", ".join("?" for _ in values)
