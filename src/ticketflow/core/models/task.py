"""Task Domain Model

Task 与 TestTask 共用同一模型，通过 kind 区分存储集合。
history 为 append-only 记录，存储于 task_history 表，加载时回填。
"""

from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, Field, field_validator

from .enums import (
    HistoryAction,
    TaskKind,
    TaskStatus,
    TestCaseStatus,
    Urgency,
)


def dedupe_ids(values: list[str]) -> list[str]:
    """去重并保持顺序（assigned_to 等集合语义字段）"""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class Attachment(BaseModel):
    """任务附件（仅保存存储引用与原始文件名）"""

    name: str = Field(description="原始文件名（UTF-8）")
    storage_ref: str = Field(description="文件存储引用")
    uploaded_by: str = Field(description="上传者 user_id")
    uploaded_at: datetime = Field(description="上传时间")


class FileDescriptor(BaseModel):
    """评论附带文件描述"""

    name: str
    storage_ref: str


class Blocker(BaseModel):
    """阻塞记录"""

    blocker_id: str = Field(description="唯一标识，ULID 格式")
    reason: str
    description: str | None = None
    created_by: str
    created_at: datetime
    resolved: bool = False
    resolved_by: str | None = None
    resolved_at: datetime | None = None


class Mention(BaseModel):
    """提及记录 -- notified 标记防止重复通知"""

    user_id: str
    notified: bool = False


class Comment(BaseModel):
    """评论"""

    comment_id: str = Field(description="唯一标识，ULID 格式")
    text: str
    author: str
    author_name: str = Field(default="", description="作者显示名（读取时回填）")
    created_at: datetime
    mentions: list[Mention] = Field(default_factory=list)
    files: list[FileDescriptor] = Field(default_factory=list)


class HistoryEntry(BaseModel):
    """history 记录 -- 不可变、append-only

    seq 同一 task 内严格单调递增。
    """

    entry_id: str = Field(description="唯一标识，ULID 格式")
    task_id: str
    seq: int = Field(description="任务内序号")
    action: HistoryAction
    performed_by: str | None = None
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)


class TestCase(BaseModel):
    """TestTask 测试用例"""

    __test__: ClassVar[bool] = False

    case_id: str
    name: str
    description: str = ""
    expected_result: str = ""
    status: TestCaseStatus = TestCaseStatus.NOT_TESTED
    executed_by: str | None = None
    executed_at: datetime | None = None


class Task(BaseModel):
    """Task / TestTask 数据模型

    status 为工作流状态的唯一来源，只能通过 workflow 模块修改。
    """

    task_id: str = Field(description="唯一标识，ULID 格式")
    kind: TaskKind = Field(default=TaskKind.TASK, description="聚合类型")
    number: str = Field(description="人类可读编号 TASK-YYYYMMDD-NNNN，创建后不可变")
    name: str
    description: str
    status: TaskStatus = Field(default=TaskStatus.TODO, description="当前状态")
    urgency: Urgency = Urgency.MEDIUM
    priority: int = Field(default=3, ge=1, le=5)
    created_by: str = Field(description="创建者 user_id，不可变")
    assigned_to: list[str] = Field(default_factory=list, description="指派用户集合")
    ticket_id: str | None = None
    parent_task_id: str | None = None
    subtask_ids: list[str] = Field(default_factory=list)
    related_task_id: str | None = Field(default=None, description="TestTask 关联的 Task")
    due_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    blockers: list[Blocker] = Field(default_factory=list)
    comments: list[Comment] = Field(default_factory=list)
    mentions: list[Mention] = Field(default_factory=list)
    history: list[HistoryEntry] = Field(default_factory=list)
    status_change_dates: dict[str, datetime] = Field(default_factory=dict)
    test_environment: str | None = None
    test_coverage: float | None = Field(default=None, ge=0, le=100)
    test_cases: list[TestCase] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @field_validator("assigned_to", "subtask_ids")
    @classmethod
    def _as_set(cls, value: list[str]) -> list[str]:
        return dedupe_ids(value)

    @property
    def open_blockers(self) -> list[Blocker]:
        return [b for b in self.blockers if not b.resolved]
