"""ExpirySweeper -- 定时过期扫描

两轮扫描（Task 与 TestTask 两个集合都扫描）：
1. Expired：Testing 且设置 estimated_hours，自最近一次进入 Testing 起超时
2. Overdue：ToDo 且 due_date 早于当前 UTC 时间

单个任务处理失败只记录日志，不中断本轮扫描。
已流转的任务不再匹配扫描条件，多实例重复执行也是幂等的。
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from .config import HOURS_PRECISION, SweeperConfig
from .exceptions import BatchItemError
from .models.enums import TaskKind, TaskStatus
from .models.task import Task
from .notifications import SqliteNotificationService
from .store import StoreGroup, save_task_with_history
from .workflow import apply_status_change, hours_between, latest_status_entry

log = structlog.get_logger()

SYSTEM_ACTOR_NAME = "System"


@dataclass
class SweepResult:
    """单轮扫描统计"""

    expired: int = 0
    overdue: int = 0
    skipped: int = 0
    failed: int = 0


def expiry_reason(elapsed_hours: float, estimated_hours: float) -> str:
    return (
        f"Testing duration ({elapsed_hours:.{HOURS_PRECISION}f} hours) "
        f"exceeded estimated hours ({estimated_hours:g} hours)"
    )


def overdue_reason(due_date: datetime) -> str:
    return f"Task exceeded due date ({due_date.astimezone(UTC).isoformat()})"


class ExpirySweeper:
    """后台过期扫描器 -- 由应用生命周期显式 start() / stop()

    测试中直接调用 tick(now) 执行一轮扫描，无需等待真实时间。
    """

    def __init__(
        self,
        stores: StoreGroup,
        notifier: SqliteNotificationService,
        config: SweeperConfig | None = None,
    ) -> None:
        self._stores = stores
        self._notifier = notifier
        self._config = config or SweeperConfig()
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def interval_s(self) -> float:
        return self._config.interval_s

    async def start(self) -> None:
        """启动后台扫描循环

        Raises:
            RuntimeError: 已在运行
        """
        if self._running:
            raise RuntimeError("ExpirySweeper is already running")
        self._running = True
        self._task = asyncio.create_task(self._loop())
        log.info("sweeper_started", interval_s=self.interval_s)

    async def stop(self, timeout: float = 5.0) -> None:
        """停止后台扫描循环（未运行时为空操作）"""
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except TimeoutError:
                log.warning("sweeper_stop_timeout", timeout=timeout)
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("sweeper_stopped")

    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # 扫描查询本身失败：记录后等待下一轮
                log.error("sweep_tick_failed", error_type=type(e).__name__, error=str(e))
            await asyncio.sleep(self.interval_s)

    async def tick(self, now: datetime | None = None) -> SweepResult:
        """执行一轮扫描"""
        now = now or datetime.now(UTC)
        result = SweepResult()
        for kind in TaskKind:
            await self._sweep_expired(kind, now, result)
            await self._sweep_overdue(kind, now, result)

        if result.expired or result.overdue or result.failed:
            log.info(
                "sweep_completed",
                expired=result.expired,
                overdue=result.overdue,
                skipped=result.skipped,
                failed=result.failed,
            )
        return result

    async def _sweep_expired(self, kind: TaskKind, now: datetime, result: SweepResult) -> None:
        async with self._stores.lock:
            candidates = await self._stores.tasks(kind).find_testing_with_estimate()
        for candidate in candidates:
            try:
                transitioned = await self._expire_one(kind, candidate.task_id, now)
            except Exception as e:
                self._record_failure(BatchItemError(candidate.task_id, e), result)
                continue
            if transitioned:
                result.expired += 1
            else:
                result.skipped += 1

    async def _sweep_overdue(self, kind: TaskKind, now: datetime, result: SweepResult) -> None:
        async with self._stores.lock:
            candidates = await self._stores.tasks(kind).find_overdue_todo(now)
        for candidate in candidates:
            try:
                transitioned = await self._mark_overdue_one(kind, candidate.task_id, now)
            except Exception as e:
                self._record_failure(BatchItemError(candidate.task_id, e), result)
                continue
            if transitioned:
                result.overdue += 1
            else:
                result.skipped += 1

    async def _expire_one(self, kind: TaskKind, task_id: str, now: datetime) -> bool:
        store = self._stores.tasks(kind)
        async with self._stores.lock:
            task = await store.get_task(task_id)
            # 重新读取后再次校验，避免与并发请求冲突
            if task is None or task.status != TaskStatus.TESTING or task.estimated_hours is None:
                return False
            entered = latest_status_entry(task, TaskStatus.TESTING)
            if entered is None:
                log.debug("sweep_expired_skipped_no_history", task_id=task_id)
                return False
            elapsed = hours_between(entered.timestamp, now)
            if elapsed <= task.estimated_hours:
                return False

            previous = task.status
            entry = apply_status_change(
                task,
                TaskStatus.EXPIRED,
                task.created_by,
                now,
                reason=expiry_reason(elapsed, task.estimated_hours),
            )
            await save_task_with_history(
                self._stores.conn, store, self._stores.history_store, task, [entry]
            )

        log.info("task_expired", task_id=task_id, kind=kind.value, elapsed_hours=round(elapsed, 2))
        await self._notify(task, previous)
        return True

    async def _mark_overdue_one(self, kind: TaskKind, task_id: str, now: datetime) -> bool:
        store = self._stores.tasks(kind)
        async with self._stores.lock:
            task = await store.get_task(task_id)
            if (
                task is None
                or task.status != TaskStatus.TODO
                or task.due_date is None
                or task.due_date >= now
            ):
                return False

            previous = task.status
            entry = apply_status_change(
                task,
                TaskStatus.OVERDUE,
                task.created_by,
                now,
                reason=overdue_reason(task.due_date),
            )
            await save_task_with_history(
                self._stores.conn, store, self._stores.history_store, task, [entry]
            )

        log.info("task_overdue", task_id=task_id, kind=kind.value)
        await self._notify(task, previous)
        return True

    async def _notify(self, task: Task, previous: TaskStatus) -> None:
        creator = await self._stores.user_store.get_user(task.created_by)
        changer_name = creator.display_name if creator else SYSTEM_ACTOR_NAME
        await self._notifier.notify_status_change(
            task, previous.value, task.status.value, changer_name
        )

    @staticmethod
    def _record_failure(error: BatchItemError, result: SweepResult) -> None:
        result.failed += 1
        log.warning(
            "sweep_item_failed",
            task_id=error.task_id,
            error_type=type(error.original_error).__name__,
            error=str(error.original_error),
        )
