"""Notification Domain Model"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import RelatedEntityType


class Notification(BaseModel):
    """用户通知"""

    notification_id: str = Field(description="唯一标识，ULID 格式")
    user_id: str
    message: str
    related_id: str | None = None
    related_type: RelatedEntityType = RelatedEntityType.TASK
    is_read: bool = False
    created_at: datetime
