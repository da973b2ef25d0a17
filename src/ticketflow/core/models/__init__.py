"""ticketflow Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    HistoryAction,
    ListFilter,
    RelatedEntityType,
    TaskKind,
    TaskStatus,
    TestCaseStatus,
    Urgency,
    UserRole,
    validate_transition,
)
from .notification import Notification
from .query import QueryPredicate
from .payloads import (
    AssignedDetails,
    BlockedDetails,
    CommentedDetails,
    CreatedDetails,
    StatusChangedDetails,
    TaskCreate,
    TaskUpdate,
    TestCaseInput,
    TestedDetails,
    UnblockedDetails,
    UpdatedDetails,
)
from .task import (
    Attachment,
    Blocker,
    Comment,
    FileDescriptor,
    HistoryEntry,
    Mention,
    Task,
    TestCase,
)
from .ticket import Ticket
from .user import Actor, User

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskKind",
    "Urgency",
    "UserRole",
    "HistoryAction",
    "RelatedEntityType",
    "TestCaseStatus",
    "ListFilter",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "validate_transition",
    # Task
    "Task",
    "Attachment",
    "Blocker",
    "Comment",
    "FileDescriptor",
    "HistoryEntry",
    "Mention",
    "TestCase",
    # User / Ticket / Notification
    "User",
    "Actor",
    "Ticket",
    "Notification",
    "QueryPredicate",
    # Details / 输入
    "CreatedDetails",
    "StatusChangedDetails",
    "UpdatedDetails",
    "AssignedDetails",
    "BlockedDetails",
    "UnblockedDetails",
    "CommentedDetails",
    "TestedDetails",
    "TaskCreate",
    "TaskUpdate",
    "TestCaseInput",
]
