"""Ticket Domain Model -- 客户提交的顶层请求，通过 task.ticket_id 反向关联任务"""

from datetime import datetime

from pydantic import BaseModel, Field


class Ticket(BaseModel):
    """Ticket"""

    ticket_id: str = Field(description="唯一标识，ULID 格式")
    number: str
    title: str
    status: str = Field(default="Registered")
    created_by: str
    created_at: datetime
