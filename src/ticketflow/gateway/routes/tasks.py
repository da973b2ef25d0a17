"""任务路由 -- Task 与 TestTask 共用，集合由路径 /api/{collection} 决定

GET    /api/{collection}                                  角色范围列表（filter=created|assigned）
GET    /api/{collection}/testing                          角色范围内 Testing 任务
GET    /api/{collection}/by-ticket/{ticket_id}            ticket 下的任务
POST   /api/{collection}                                  创建任务（JSON）
POST   /api/{collection}/with-attachments                 创建任务并上传附件（multipart）
GET    /api/{collection}/by-number/{number}               按编号查询任务详情
GET    /api/{collection}/{task_id}                        任务详情（含 history）
PATCH  /api/{collection}/{task_id}                        更新字段 / 状态
PATCH  /api/{collection}/{task_id}/status                 仅变更状态
POST   /api/{collection}/{task_id}/assignees              追加指派
POST   /api/{collection}/{task_id}/attachments            上传附件
GET    /api/{collection}/{task_id}/attachments/{ref}      下载附件
GET    /api/{collection}/{task_id}/blocked-subtasks       Blocked 子任务
POST   /api/test-tasks/{task_id}/test-cases/{case_id}     记录用例结果
"""

from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from starlette.responses import JSONResponse, Response
from ticketflow.core.models import (
    Actor,
    ListFilter,
    Task,
    TaskCreate,
    TaskStatus,
    TaskUpdate,
    TestCaseStatus,
)

from ..deps import Collection, get_actor, get_notifier, get_store_group
from ..services.task_service import TaskService
from ..services.uploads import read_uploads

router = APIRouter()


class StatusChangeRequest(BaseModel):
    """状态变更请求"""

    status: TaskStatus
    reason: str = ""


class AssignRequest(BaseModel):
    """指派请求（user_ids 允许单个字符串）"""

    user_ids: list[str] | str = Field(default_factory=list)

    def ids(self) -> list[str]:
        return [self.user_ids] if isinstance(self.user_ids, str) else self.user_ids


class CaseResultRequest(BaseModel):
    """测试用例结果请求"""

    result: TestCaseStatus


def task_to_dict(task: Task, with_history: bool = True) -> dict[str, Any]:
    """序列化任务"""
    exclude = None if with_history else {"history"}
    return task.model_dump(mode="json", exclude=exclude)


def _tasks_response(tasks: list[Task]) -> dict[str, Any]:
    return {"tasks": [task_to_dict(t, with_history=False) for t in tasks]}


@router.get("/api/{collection}")
async def list_tasks(
    collection: Collection,
    filter: ListFilter | None = Query(default=None, description="created / assigned"),
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """按角色范围查询任务列表，按 created_at 倒序"""
    service = TaskService(store_group, notifier)
    return _tasks_response(await service.list_tasks(collection.kind, actor, filter))


@router.get("/api/{collection}/testing")
async def list_testing_tasks(
    collection: Collection,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """角色范围内处于 Testing 的任务"""
    service = TaskService(store_group, notifier)
    return _tasks_response(await service.list_testing_tasks(collection.kind, actor))


@router.get("/api/{collection}/by-ticket/{ticket_id}")
async def list_ticket_tasks(
    collection: Collection,
    ticket_id: str,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """角色范围内属于指定 ticket 的任务"""
    service = TaskService(store_group, notifier)
    return _tasks_response(await service.list_ticket_tasks(collection.kind, ticket_id, actor))


@router.post("/api/{collection}")
async def create_task(
    collection: Collection,
    body: TaskCreate,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """创建任务，返回 201"""
    service = TaskService(store_group, notifier)
    task = await service.create_task(collection.kind, body, actor)
    return JSONResponse(status_code=201, content={"task": task_to_dict(task)})


@router.post("/api/{collection}/with-attachments")
async def create_task_with_attachments(
    collection: Collection,
    payload: str = Form(..., description="TaskCreate JSON"),
    files: list[UploadFile] | None = File(default=None),
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """创建任务并同时上传附件（multipart/form-data），返回 201"""
    try:
        body = TaskCreate.model_validate_json(payload)
    except PydanticValidationError as e:
        raise RequestValidationError(
            [{**err, "loc": ("body", "payload", *err["loc"])} for err in e.errors()]
        ) from e
    service = TaskService(store_group, notifier)
    task = await service.create_task(
        collection.kind, body, actor, files=await read_uploads(files)
    )
    return JSONResponse(status_code=201, content={"task": task_to_dict(task)})


@router.get("/api/{collection}/by-number/{number}")
async def get_task_by_number(
    collection: Collection,
    number: str,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """按编号查询任务详情"""
    service = TaskService(store_group, notifier)
    return {"task": task_to_dict(await service.get_task_by_number(collection.kind, number))}


@router.get("/api/{collection}/{task_id}")
async def get_task_detail(
    collection: Collection,
    task_id: str,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """任务详情（含 history 与评论作者显示名）"""
    service = TaskService(store_group, notifier)
    return {"task": task_to_dict(await service.get_task(collection.kind, task_id))}


@router.patch("/api/{collection}/{task_id}")
async def update_task(
    collection: Collection,
    task_id: str,
    body: TaskUpdate,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """更新任务字段与状态"""
    service = TaskService(store_group, notifier)
    task = await service.update_task(collection.kind, task_id, body, actor)
    return {"task": task_to_dict(task)}


@router.patch("/api/{collection}/{task_id}/status")
async def change_status(
    collection: Collection,
    task_id: str,
    body: StatusChangeRequest,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """变更任务状态"""
    service = TaskService(store_group, notifier)
    task = await service.change_status(
        collection.kind, task_id, body.status, actor, reason=body.reason
    )
    return {"task": task_to_dict(task)}


@router.post("/api/{collection}/{task_id}/assignees")
async def assign_users(
    collection: Collection,
    task_id: str,
    body: AssignRequest,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """追加指派用户"""
    service = TaskService(store_group, notifier)
    task = await service.assign_users(collection.kind, task_id, body.ids(), actor)
    return {"task": task_to_dict(task)}


@router.post("/api/{collection}/{task_id}/attachments")
async def upload_attachments(
    collection: Collection,
    task_id: str,
    files: list[UploadFile] = File(...),
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """上传附件"""
    service = TaskService(store_group, notifier)
    task = await service.add_attachments(
        collection.kind, task_id, await read_uploads(files), actor
    )
    return JSONResponse(
        status_code=201,
        content={"attachments": [a.model_dump(mode="json") for a in task.attachments]},
    )


@router.get("/api/{collection}/{task_id}/attachments/{storage_ref:path}")
async def download_attachment(
    collection: Collection,
    task_id: str,
    storage_ref: str,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """下载附件（需要任务访问权限）"""
    service = TaskService(store_group, notifier)
    attachment, content = await service.get_attachment(
        collection.kind, task_id, storage_ref, actor
    )
    return Response(
        content=content,
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(attachment.name)}"
        },
    )


@router.get("/api/{collection}/{task_id}/blocked-subtasks")
async def list_blocked_subtasks(
    collection: Collection,
    task_id: str,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """父任务下处于 Blocked 的子任务"""
    service = TaskService(store_group, notifier)
    return _tasks_response(await service.list_blocked_subtasks(collection.kind, task_id))


@router.post("/api/test-tasks/{task_id}/test-cases/{case_id}")
async def record_test_result(
    task_id: str,
    case_id: str,
    body: CaseResultRequest,
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
    notifier=Depends(get_notifier),
):
    """记录测试用例执行结果"""
    service = TaskService(store_group, notifier)
    task = await service.record_test_result(task_id, case_id, body.result, actor)
    return {"task": task_to_dict(task)}

