"""Workflow 状态机 -- 纯函数，不做 I/O

所有状态写入都经过 apply_status_change：
- 状态未变化：不产生任何记录
- 状态变化：追加一条 statusChanged 记录 {previousStatus, newStatus}
- 流转表外（含终态出发）的流转仍然生效，但记录 offWorkflow 标记并告警

各函数直接修改传入的 Task 并返回本次新增的 history 记录，
调用方负责在同一事务内持久化任务与这些记录。
"""

from datetime import datetime
from typing import Any

import structlog
from ulid import ULID

from .config import HOURS_PRECISION
from .exceptions import NotFoundError, ValidationError
from .models.enums import (
    TERMINAL_STATES,
    HistoryAction,
    TaskKind,
    TaskStatus,
    TestCaseStatus,
    validate_transition,
)
from .models.payloads import (
    BlockedDetails,
    StatusChangedDetails,
    TestedDetails,
    UnblockedDetails,
    UpdatedDetails,
)
from .models.task import Blocker, HistoryEntry, Task, TestCase, dedupe_ids

log = structlog.get_logger()

# updated 记录不列出的内部字段
_BOOKKEEPING_FIELDS = frozenset(
    {"task_id", "kind", "number", "created_by", "created_at", "updated_at", "history", "status"}
)

# 解除阻塞时无法确定阻塞前状态的回退值
UNBLOCK_FALLBACK_STATUS = TaskStatus.TODO


def new_entry(
    task: Task,
    action: HistoryAction,
    performed_by: str | None,
    details: dict[str, Any],
    now: datetime,
) -> HistoryEntry:
    """构建 history 记录并追加到 task.history（seq 连续递增）"""
    next_seq = task.history[-1].seq + 1 if task.history else 1
    entry = HistoryEntry(
        entry_id=str(ULID()),
        task_id=task.task_id,
        seq=next_seq,
        action=action,
        performed_by=performed_by,
        timestamp=now,
        details=details,
    )
    task.history.append(entry)
    return entry


def latest_status_entry(task: Task, status: TaskStatus) -> HistoryEntry | None:
    """最近一条 newStatus == status 的 statusChanged 记录"""
    for entry in reversed(task.history):
        if (
            entry.action == HistoryAction.STATUS_CHANGED
            and entry.details.get("newStatus") == status.value
        ):
            return entry
    return None


def hours_between(start: datetime, end: datetime) -> float:
    """两时间点间隔的小时数（未取整）"""
    return (end - start).total_seconds() / 3600


def apply_status_change(
    task: Task,
    new_status: TaskStatus,
    performed_by: str | None,
    now: datetime,
    reason: str = "",
) -> HistoryEntry | None:
    """写入新状态并计算派生效果

    Returns:
        新增的 statusChanged 记录；状态未变化时返回 None
    """
    previous = task.status
    if new_status == previous:
        return None

    off_workflow = not validate_transition(previous, new_status)
    if off_workflow:
        log.warning(
            "off_workflow_transition",
            task_id=task.task_id,
            from_status=previous.value,
            to_status=new_status.value,
            from_terminal=previous in TERMINAL_STATES,
        )

    if new_status == TaskStatus.TESTING:
        if previous == TaskStatus.IN_PROGRESS:
            started = latest_status_entry(task, TaskStatus.IN_PROGRESS)
            if started is not None:
                task.actual_hours = round(
                    hours_between(started.timestamp, now), HOURS_PRECISION
                )
        if task.kind == TaskKind.TEST_TASK:
            task.status_change_dates[TaskStatus.TESTING.value] = now

    task.status = new_status
    task.updated_at = now
    return new_entry(
        task,
        HistoryAction.STATUS_CHANGED,
        performed_by,
        StatusChangedDetails(
            previous_status=previous,
            new_status=new_status,
            reason=reason,
            off_workflow=off_workflow,
        ).to_details(),
        now,
    )


def apply_field_updates(
    task: Task,
    changes: dict[str, Any],
    performed_by: str | None,
    now: datetime,
) -> HistoryEntry | None:
    """更新非状态字段，记录实际变化的字段名

    status 与内部字段被忽略；状态请走 apply_status_change。
    """
    changed: list[str] = []
    for field, value in changes.items():
        if field in _BOOKKEEPING_FIELDS or field not in Task.model_fields:
            continue
        if field == "assigned_to":
            value = dedupe_ids(value or [])
        if getattr(task, field) == value:
            continue
        setattr(task, field, value)
        changed.append(field)

    if not changed:
        return None

    task.updated_at = now
    return new_entry(
        task,
        HistoryAction.UPDATED,
        performed_by,
        UpdatedDetails(updated_fields=changed).to_details(),
        now,
    )


def add_blocker(
    task: Task,
    reason: str,
    performed_by: str,
    now: datetime,
    description: str | None = None,
) -> tuple[Blocker, list[HistoryEntry]]:
    """添加阻塞并强制切换到 Blocked

    最后一条新增记录总是 blocked；状态原本不是 Blocked 时其前有一条 statusChanged。

    Raises:
        ValidationError: reason 为空
    """
    if not reason or not reason.strip():
        raise ValidationError("Blocker reason is required", field="reason")

    previous = task.status
    blocker = Blocker(
        blocker_id=str(ULID()),
        reason=reason.strip(),
        description=description,
        created_by=performed_by,
        created_at=now,
    )

    entries: list[HistoryEntry] = []
    status_entry = apply_status_change(task, TaskStatus.BLOCKED, performed_by, now)
    if status_entry is not None:
        entries.append(status_entry)

    task.blockers.append(blocker)
    task.updated_at = now
    entries.append(
        new_entry(
            task,
            HistoryAction.BLOCKED,
            performed_by,
            BlockedDetails(
                task_id=task.task_id,
                blocker_id=blocker.blocker_id,
                previous_status=previous,
            ).to_details(),
            now,
        )
    )
    return blocker, entries


def status_before_block(task: Task) -> TaskStatus:
    """当前阻塞周期开始前的状态

    取最近一条 previousStatus 不为 Blocked 的 blocked 记录；找不到时回退 ToDo。
    """
    for entry in reversed(task.history):
        if entry.action != HistoryAction.BLOCKED:
            continue
        previous = entry.details.get("previousStatus")
        if previous and previous != TaskStatus.BLOCKED.value:
            return TaskStatus(previous)
    return UNBLOCK_FALLBACK_STATUS


def resolve_blocker(
    task: Task,
    blocker_id: str,
    performed_by: str,
    now: datetime,
) -> tuple[Blocker, list[HistoryEntry]]:
    """解除阻塞

    最后一个未解除的阻塞被解除且任务仍为 Blocked 时，恢复到阻塞前状态。

    Raises:
        NotFoundError: blocker 不存在
        ValidationError: blocker 已解除
    """
    blocker = next((b for b in task.blockers if b.blocker_id == blocker_id), None)
    if blocker is None:
        raise NotFoundError("Blocker", blocker_id)
    if blocker.resolved:
        raise ValidationError("Blocker is already resolved", field="blocker_id")

    blocker.resolved = True
    blocker.resolved_by = performed_by
    blocker.resolved_at = now
    task.updated_at = now

    open_count = len(task.open_blockers)
    entries = [
        new_entry(
            task,
            HistoryAction.UNBLOCKED,
            performed_by,
            UnblockedDetails(
                task_id=task.task_id,
                blocker_id=blocker_id,
                open_blockers=open_count,
            ).to_details(),
            now,
        )
    ]

    if open_count == 0 and task.status == TaskStatus.BLOCKED:
        status_entry = apply_status_change(
            task,
            status_before_block(task),
            performed_by,
            now,
            reason="All blockers resolved",
        )
        if status_entry is not None:
            entries.append(status_entry)

    return blocker, entries


def record_test_result(
    task: Task,
    case_id: str,
    result: TestCaseStatus,
    performed_by: str,
    now: datetime,
) -> tuple[TestCase, list[HistoryEntry]]:
    """记录测试用例执行结果

    全部用例执行完毕后：任一失败 → TestFailed，否则 → TestPassed。

    Raises:
        ValidationError: 非 TestTask，或 result 为 NotTested
        NotFoundError: 用例不存在
    """
    if task.kind != TaskKind.TEST_TASK:
        raise ValidationError("Test results can only be recorded on test tasks")
    if result == TestCaseStatus.NOT_TESTED:
        raise ValidationError("Result must be Passed or Failed", field="result")

    case = next((c for c in task.test_cases if c.case_id == case_id), None)
    if case is None:
        raise NotFoundError("TestCase", case_id)

    case.status = result
    case.executed_by = performed_by
    case.executed_at = now
    task.updated_at = now

    entries = [
        new_entry(
            task,
            HistoryAction.TESTED,
            performed_by,
            TestedDetails(test_case=case_id, result=result).to_details(),
            now,
        )
    ]

    if all(c.status != TestCaseStatus.NOT_TESTED for c in task.test_cases):
        any_failed = any(c.status == TestCaseStatus.FAILED for c in task.test_cases)
        outcome = TaskStatus.TEST_FAILED if any_failed else TaskStatus.TEST_PASSED
        status_entry = apply_status_change(task, outcome, performed_by, now)
        if status_entry is not None:
            entries.append(status_entry)

    return case, entries


def status_changes(entries: list[HistoryEntry]) -> list[tuple[str, str]]:
    """提取新增记录中的 (previousStatus, newStatus)，用于提交后发送通知"""
    return [
        (entry.details["previousStatus"], entry.details["newStatus"])
        for entry in entries
        if entry.action == HistoryAction.STATUS_CHANGED
    ]
