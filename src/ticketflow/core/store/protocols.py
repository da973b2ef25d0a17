"""Store / 协作方 Protocol 接口定义

使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from typing import Protocol

from ..models.enums import RelatedEntityType
from ..models.task import HistoryEntry, Task


class HistoryStore(Protocol):
    """History 存储接口

    history 表 append-only：只允许插入，不允许更新或删除。
    """

    async def append_entry(self, entry: HistoryEntry) -> None:
        """追加 history 记录（append-only）"""
        ...

    async def get_entries_for_task(self, task_id: str) -> list[HistoryEntry]:
        """查询指定任务的所有 history 记录"""
        ...


class AttachmentStorage(Protocol):
    """文件存储接口 -- 接收文件内容，返回稳定的存储引用"""

    def put(self, task_id: str, filename: str, content: bytes) -> str:
        """写入文件，返回存储引用"""
        ...

    def get(self, storage_ref: str) -> bytes | None:
        """读取文件内容"""
        ...

    def delete(self, storage_ref: str) -> None:
        """删除文件（不存在时忽略）"""
        ...


class NotificationService(Protocol):
    """通知协作方接口"""

    async def create_notifications(
        self,
        user_ids: list[str],
        message: str,
        related_id: str | None,
        related_type: RelatedEntityType,
    ) -> None:
        """为一组用户创建通知"""
        ...

    async def notify_task_assignment(
        self,
        user_id: str,
        task_id: str,
        task_name: str,
        assigner_name: str,
        related_type: RelatedEntityType = RelatedEntityType.TASK,
    ) -> None:
        """通知用户被指派到任务"""
        ...

    def extract_mentions(self, text: str) -> list[str]:
        """从文本中提取 @name 标记"""
        ...

    async def find_users_by_mentions(self, tokens: list[str]) -> list[str]:
        """将 @name 标记解析为 user_id"""
        ...

    async def process_mentions(
        self,
        text: str,
        author_name: str,
        entity_id: str,
        entity_type: RelatedEntityType,
    ) -> None:
        """解析文本提及并直接通知被提及用户"""
        ...

    async def notify_status_change(
        self, task: Task, previous: str, new: str, changer_name: str
    ) -> None:
        """状态变更通知（assigned_to 与 admin）"""
        ...
