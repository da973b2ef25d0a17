"""History details 子类型 + 输入 DTO

details 以 camelCase 键落盘（previousStatus / newStatus 等）。
assigned_to 的标量/数组归一化只发生在 DTO 层，核心模型只见到集合。
"""

from datetime import UTC, datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import TaskStatus, TestCaseStatus, Urgency


class _Details(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_details(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_defaults=True)


class CreatedDetails(_Details):
    """created 记录 details"""

    number: str


class StatusChangedDetails(_Details):
    """statusChanged 记录 details"""

    previous_status: TaskStatus = Field(alias="previousStatus")
    new_status: TaskStatus = Field(alias="newStatus")
    reason: str = Field(default="")
    off_workflow: bool = Field(default=False, alias="offWorkflow")


class UpdatedDetails(_Details):
    """updated 记录 details"""

    updated_fields: list[str] = Field(alias="updatedFields")


class AssignedDetails(_Details):
    """assigned 记录 details"""

    assigned_to: list[str] = Field(alias="assignedTo")


class BlockedDetails(_Details):
    """blocked 记录 details"""

    task_id: str = Field(alias="taskId")
    blocker_id: str = Field(alias="blockerId")
    previous_status: TaskStatus = Field(alias="previousStatus")


class UnblockedDetails(_Details):
    """unblocked 记录 details"""

    task_id: str = Field(alias="taskId")
    blocker_id: str = Field(alias="blockerId")
    open_blockers: int = Field(default=0, alias="openBlockers")


class CommentedDetails(_Details):
    """commented 记录 details"""

    comment_id: str = Field(alias="commentId")
    mentions: list[str] = Field(default_factory=list)


class TestedDetails(_Details):
    """tested 记录 details"""

    __test__: ClassVar[bool] = False

    test_case: str = Field(alias="testCase")
    result: TestCaseStatus


def _normalize_ids(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v]


def _as_utc(value: datetime | None) -> datetime | None:
    # 不带时区的时间按 UTC 解释
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class TestCaseInput(BaseModel):
    """创建 TestTask 时的测试用例输入"""

    __test__: ClassVar[bool] = False

    name: str
    description: str = ""
    expected_result: str = ""


class TaskCreate(BaseModel):
    """任务创建输入"""

    name: str = ""
    description: str = ""
    ticket_id: str | None = None
    parent_task_id: str | None = None
    related_task_id: str | None = None
    assigned_to: list[str] = Field(default_factory=list)
    mentions: list[str] = Field(default_factory=list)
    urgency: Urgency = Urgency.MEDIUM
    priority: int = Field(default=3, ge=1, le=5)
    due_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    test_environment: str | None = None
    test_coverage: float | None = Field(default=None, ge=0, le=100)
    test_cases: list[TestCaseInput] = Field(default_factory=list)

    @field_validator("assigned_to", "mentions", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> list[str]:
        return _normalize_ids(value)

    @field_validator("ticket_id", "parent_task_id", "related_task_id", mode="before")
    @classmethod
    def _blank_as_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("due_date")
    @classmethod
    def _due_date_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


# 可显式置空的字段；其余字段传 null 视为未提供
_CLEARABLE_FIELDS = frozenset({"due_date", "estimated_hours", "test_environment", "test_coverage"})


class TaskUpdate(BaseModel):
    """任务更新输入 -- 仅显式提供的字段参与更新"""

    name: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    urgency: Urgency | None = None
    priority: int | None = Field(default=None, ge=1, le=5)
    due_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    assigned_to: list[str] | None = None
    test_environment: str | None = None
    test_coverage: float | None = Field(default=None, ge=0, le=100)

    @field_validator("assigned_to", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> list[str] | None:
        if value is None:
            return None
        return _normalize_ids(value)

    @field_validator("due_date")
    @classmethod
    def _due_date_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    def changes(self) -> dict[str, Any]:
        """显式提供的字段"""
        return {
            field: value
            for field, value in self.model_dump(exclude_unset=True).items()
            if value is not None or field in _CLEARABLE_FIELDS
        }
