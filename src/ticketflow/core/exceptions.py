"""ticketflow 异常体系

NotFound / Validation / Authorization 为同步失败，直接返回给调用方，不自动重试。
PersistenceError 表示底层存储失败，对核心逻辑不透明。
BatchItemError 仅在扫描器内部使用，逐条捕获并记录日志。
"""


class TicketflowError(Exception):
    """ticketflow 基础异常"""

    code: str = "TICKETFLOW_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(TicketflowError):
    """引用的 task / ticket / user 不存在"""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        """
        Args:
            entity: 实体类型名称（Task / TestTask / Ticket / User / Blocker）
            entity_id: 实体 ID
        """
        super().__init__(f"{entity} with id {entity_id} does not exist")
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(TicketflowError):
    """缺少必填字段或字段非法（如空的 blocker reason、空评论）"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class AuthorizationError(TicketflowError):
    """操作者角色 / 所有权 / 指派关系不足以执行该操作"""

    code = "NOT_AUTHORIZED"


class PersistenceError(TicketflowError):
    """底层存储失败（事务已回滚）"""

    code = "PERSISTENCE_ERROR"

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error


class BatchItemError(TicketflowError):
    """扫描器单条记录处理失败 -- 不中断批次，不向外传播"""

    code = "BATCH_ITEM_ERROR"

    def __init__(self, task_id: str, original_error: Exception) -> None:
        super().__init__(
            f"Failed to process task {task_id}: {type(original_error).__name__}"
        )
        self.task_id = task_id
        self.original_error = original_error
