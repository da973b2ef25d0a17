"""评论路由

POST /api/{collection}/{task_id}/comments (multipart/form-data):
    text: 评论内容
    mentions: 被提及用户 ID（可重复）
    files: 附带文件（可选，可重复）
返回重新加载后的任务，评论作者显示名已回填。
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from starlette.responses import JSONResponse
from ticketflow.core.models import Actor

from ..deps import Collection, get_actor, get_notifier, get_store_group
from ..services.comment_service import CommentService
from ..services.uploads import read_uploads
from .tasks import task_to_dict

router = APIRouter()


@router.post("/api/{collection}/{task_id}/comments")
async def add_comment(
    collection: Collection,
    task_id: str,
    text: str = Form(default=""),
    mentions: list[str] = Form(default=[]),
    files: list[UploadFile] | None = File(default=None),
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """添加评论，返回 201 + 任务"""
    service = CommentService(store_group, notifier)
    task = await service.add_comment(
        collection.kind,
        task_id,
        actor,
        text,
        explicit_mentions=[m for m in mentions if m],
        files=await read_uploads(files),
    )
    return JSONResponse(status_code=201, content={"task": task_to_dict(task)})
