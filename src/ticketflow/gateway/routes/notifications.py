"""通知路由

GET  /api/notifications: 当前用户通知（默认仅未读）
POST /api/notifications/{notification_id}/read: 标记已读
"""

from fastapi import APIRouter, Depends, Query
from ticketflow.core.exceptions import NotFoundError
from ticketflow.core.models import Actor

from ..deps import get_actor, get_notifier

router = APIRouter()


@router.get("/api/notifications")
async def list_notifications(
    unread_only: bool = Query(default=True),
    actor: Actor = Depends(get_actor),
    notifier=Depends(get_notifier),
):
    """查询当前用户通知，按创建时间倒序"""
    notifications = await notifier.list_notifications(actor.user_id, unread_only)
    return {"notifications": [n.model_dump(mode="json") for n in notifications]}


@router.post("/api/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    actor: Actor = Depends(get_actor),
    notifier=Depends(get_notifier),
):
    """标记通知已读（只能标记自己的通知）"""
    if not await notifier.mark_read(actor.user_id, notification_id):
        raise NotFoundError("Notification", notification_id)
    return {"notification_id": notification_id, "is_read": True}
