"""枚举定义

包含 TaskStatus 状态机、TaskKind、UserRole、HistoryAction 等枚举，
以及 VALID_TRANSITIONS 工作流流转表和 TERMINAL_STATES 终态集合。
"""

from collections.abc import Mapping
from enum import StrEnum
from typing import TypeVar


class TaskStatus(StrEnum):
    """Task / TestTask 状态机"""

    TODO = "ToDo"
    IN_PROGRESS = "InProgress"
    BLOCKED = "Blocked"
    DECLINED = "Declined"
    TESTING = "Testing"
    TEST_FAILED = "TestFailed"
    TEST_PASSED = "TestPassed"
    DONE = "Done"
    EXPIRED = "Expired"
    OVERDUE = "Overdue"


# 工作流流转表：状态写入不受此表限制（任何授权调用方可写任意状态），
# 表外流转照常生效，但 statusChanged 记录会标记 offWorkflow。
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.TODO: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.BLOCKED,
        TaskStatus.DECLINED,
        TaskStatus.OVERDUE,
    },
    TaskStatus.IN_PROGRESS: {
        TaskStatus.TESTING,
        TaskStatus.BLOCKED,
        TaskStatus.DECLINED,
        TaskStatus.DONE,
    },
    # 最后一个未解决 blocker 被解决时，恢复到进入 Blocked 之前的状态
    TaskStatus.BLOCKED: {
        TaskStatus.TODO,
        TaskStatus.IN_PROGRESS,
        TaskStatus.TESTING,
        TaskStatus.DECLINED,
    },
    TaskStatus.DECLINED: {TaskStatus.TODO},
    TaskStatus.TESTING: {
        TaskStatus.TEST_PASSED,
        TaskStatus.TEST_FAILED,
        TaskStatus.BLOCKED,
        TaskStatus.IN_PROGRESS,
        TaskStatus.EXPIRED,
    },
    # 软终态：可再写入，但会被标记
    TaskStatus.TEST_FAILED: set(),
    TaskStatus.TEST_PASSED: set(),
    TaskStatus.DONE: set(),
    TaskStatus.EXPIRED: set(),
    TaskStatus.OVERDUE: set(),
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.TEST_FAILED,
    TaskStatus.TEST_PASSED,
    TaskStatus.DONE,
    TaskStatus.EXPIRED,
    TaskStatus.OVERDUE,
}


class TaskKind(StrEnum):
    """任务聚合类型：Task 与 TestTask 结构相同，分表存储"""

    TASK = "Task"
    TEST_TASK = "TestTask"

    @property
    def table(self) -> str:
        return "tasks" if self is TaskKind.TASK else "test_tasks"


class Urgency(StrEnum):
    """紧急程度"""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class UserRole(StrEnum):
    """用户角色 -- 封闭枚举，驱动所有授权决策"""

    ADMIN = "admin"
    AGENT_COMMERCIAL = "agentCommercial"
    CLIENT = "client"
    RESPONSIBLE_CLIENT = "responsibleClient"
    PROJECT_MANAGER = "projectManager"
    GROUP_LEADER = "groupLeader"
    DEVELOPER = "developer"
    RESPONSIBLE_TESTER = "responsibleTester"
    TESTER = "tester"


class HistoryAction(StrEnum):
    """history 记录动作类型"""

    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "statusChanged"
    ASSIGNED = "assigned"
    BLOCKED = "blocked"
    UNBLOCKED = "unblocked"
    COMMENTED = "commented"
    TESTED = "tested"


class RelatedEntityType(StrEnum):
    """通知关联实体类型"""

    TASK = "Task"
    TEST_TASK = "TestTask"
    TICKET = "Ticket"
    USER = "User"


class TestCaseStatus(StrEnum):
    """测试用例执行结果"""

    __test__ = False

    NOT_TESTED = "NotTested"
    PASSED = "Passed"
    FAILED = "Failed"


class ListFilter(StrEnum):
    """列表范围过滤（groupLeader 使用）"""

    CREATED = "created"
    ASSIGNED = "assigned"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """判断流转是否在工作流流转表内

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转在表内，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed


T = TypeVar("T")


def require_all_roles(table: Mapping[UserRole, T], decision: str) -> Mapping[UserRole, T]:
    """校验角色分派表覆盖所有角色（模块导入时调用）

    Raises:
        RuntimeError: 分派表缺少某个角色
    """
    missing = [role.value for role in UserRole if role not in table]
    if missing:
        raise RuntimeError(f"{decision} table is missing roles: {missing}")
    return table
