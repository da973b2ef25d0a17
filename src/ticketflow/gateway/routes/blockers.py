"""阻塞路由

POST /api/{collection}/{task_id}/blockers: 添加阻塞（任务强制切换为 Blocked）
POST /api/{collection}/{task_id}/blockers/{blocker_id}/resolve: 解除阻塞
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.responses import JSONResponse
from ticketflow.core.models import Actor

from ..deps import Collection, get_actor, get_notifier, get_store_group
from ..services.blocker_service import BlockerService

router = APIRouter()


class BlockerRequest(BaseModel):
    """添加阻塞请求（reason 是否为空由服务层校验）"""

    reason: str = ""
    description: str | None = None


@router.post("/api/{collection}/{task_id}/blockers")
async def add_blocker(
    collection: Collection,
    task_id: str,
    body: BlockerRequest,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """添加阻塞，返回 201 + blocker"""
    service = BlockerService(store_group, notifier)
    blocker = await service.add_blocker(
        collection.kind, task_id, body.reason, actor, description=body.description
    )
    return JSONResponse(status_code=201, content={"blocker": blocker.model_dump(mode="json")})


@router.post("/api/{collection}/{task_id}/blockers/{blocker_id}/resolve")
async def resolve_blocker(
    collection: Collection,
    task_id: str,
    blocker_id: str,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """解除阻塞"""
    service = BlockerService(store_group, notifier)
    blocker = await service.resolve_blocker(collection.kind, task_id, blocker_id, actor)
    return {"blocker": blocker.model_dump(mode="json")}
