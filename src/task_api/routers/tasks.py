from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status

from ..auth import get_current_user
from ..errors import NotFound
from ..models import TaskEntity, UserEntity
from ..repositories import ListQuery, TaskRepository
from ..schemas import (
    BulkDeleteQuery,
    DeletedTask,
    Envelope,
    ErrorEnvelope,
    ModifiedCount,
    PageEnvelope,
    TaskCreate,
    TaskIdParams,
    TaskListQuery,
    TaskOut,
    TaskPatch,
    TaskQuickCreate,
    TaskReplace,
)
from ..settings import Settings
from ..utils import envelope, page_meta
from ..validation import RequestSchema, ValidatedRequest, validated

router = APIRouter(
    prefix="/tasks",
    tags=["tasks"],
    responses={401: {"model": ErrorEnvelope, "description": "Not authenticated"}},
)

LIST_TASKS = RequestSchema(query=TaskListQuery)
CREATE_TASK = RequestSchema(body=TaskCreate)
QUICK_TASK = RequestSchema(body=TaskQuickCreate)
TASK_BY_ID = RequestSchema(params=TaskIdParams)
REPLACE_TASK = RequestSchema(params=TaskIdParams, body=TaskReplace)
PATCH_TASK = RequestSchema(params=TaskIdParams, body=TaskPatch)
DELETE_BY_STATUS = RequestSchema(query=BulkDeleteQuery)
COMPLETE_ALL = RequestSchema()

_NOT_FOUND = {404: {"model": ErrorEnvelope, "description": "Task not found"}}
_INVALID = {400: {"model": ErrorEnvelope, "description": "Validation error"}}


def _get_tasks(request: Request) -> TaskRepository:
    return request.app.state.tasks


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _found(task: Optional[TaskEntity]) -> TaskEntity:
    if task is None:
        raise NotFound("Task not found")
    return task


# Fixed paths are registered before "/{id}" so they are not captured as ids.


# PUBLIC_INTERFACE
@router.patch(
    "/complete-all",
    response_model=Envelope[ModifiedCount],
    summary="Complete all tasks",
    description="Mark every one of the caller's open tasks as completed.",
    dependencies=[Depends(validated(COMPLETE_ALL))],
)
def complete_all_tasks(
    user: UserEntity = Depends(get_current_user),
    tasks: TaskRepository = Depends(_get_tasks),
) -> Dict[str, Any]:
    return envelope({"modified_count": tasks.complete_all(user["id"])})


# PUBLIC_INTERFACE
@router.post(
    "/quick",
    response_model=Envelope[TaskOut],
    status_code=status.HTTP_201_CREATED,
    summary="Quick create",
    description="Create a task from a title alone; it starts in-progress.",
    responses=_INVALID,
)
def quick_create_task(
    data: ValidatedRequest = Depends(validated(QUICK_TASK)),
    user: UserEntity = Depends(get_current_user),
    tasks: TaskRepository = Depends(_get_tasks),
) -> Dict[str, Any]:
    return envelope(tasks.create_quick(user["id"], data.body.title))


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=PageEnvelope[TaskOut],
    summary="List tasks",
    description=(
        "List the caller's tasks, newest first.\n\n"
        "Query parameters:\n"
        "- page: 1-based page number (default 1)\n"
        "- limit: page size (default 10, capped by MAX_PAGE_SIZE)\n"
        "- status: pending, in-progress or completed\n"
        "- search: case-insensitive text to find in titles\n\n"
        "A page past the end returns an empty list."
    ),
    responses=_INVALID,
)
def list_tasks(
    data: ValidatedRequest = Depends(validated(LIST_TASKS)),
    user: UserEntity = Depends(get_current_user),
    tasks: TaskRepository = Depends(_get_tasks),
    settings: Settings = Depends(_get_settings),
) -> Dict[str, Any]:
    q: TaskListQuery = data.query
    page = tasks.list(
        user["id"],
        ListQuery(
            page=q.page,
            limit=q.limit or settings.default_page_size,
            status=q.status,
            search=q.search,
        ),
    )
    return envelope(page.items, meta=page_meta(page))


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=Envelope[TaskOut],
    status_code=status.HTTP_201_CREATED,
    summary="Create task",
    responses=_INVALID,
)
def create_task(
    data: ValidatedRequest = Depends(validated(CREATE_TASK)),
    user: UserEntity = Depends(get_current_user),
    tasks: TaskRepository = Depends(_get_tasks),
) -> Dict[str, Any]:
    body: TaskCreate = data.body
    created = tasks.create(
        user["id"],
        body.title,
        description=body.description,
        status=body.status,
        due_date=body.due_date,
    )
    return envelope(created)


# PUBLIC_INTERFACE
@router.delete(
    "",
    response_model=Envelope[ModifiedCount],
    summary="Delete tasks by status",
    description="Soft-delete every task with the given status. Requires confirm=true.",
    responses=_INVALID,
)
def delete_tasks_by_status(
    data: ValidatedRequest = Depends(validated(DELETE_BY_STATUS)),
    user: UserEntity = Depends(get_current_user),
    tasks: TaskRepository = Depends(_get_tasks),
) -> Dict[str, Any]:
    q: BulkDeleteQuery = data.query
    modified = tasks.soft_delete_by_status(user["id"], q.status, confirmed=q.confirm)
    return envelope({"modified_count": modified})


# PUBLIC_INTERFACE
@router.get(
    "/{id}",
    response_model=Envelope[TaskOut],
    summary="Get task",
    responses={**_INVALID, **_NOT_FOUND},
)
def get_task(
    data: ValidatedRequest = Depends(validated(TASK_BY_ID)),
    user: UserEntity = Depends(get_current_user),
    tasks: TaskRepository = Depends(_get_tasks),
) -> Dict[str, Any]:
    return envelope(_found(tasks.get(user["id"], data.params.id)))


# PUBLIC_INTERFACE
@router.put(
    "/{id}",
    response_model=Envelope[TaskOut],
    summary="Replace task",
    description="Full update: description and dueDate are cleared when omitted.",
    responses={**_INVALID, **_NOT_FOUND},
)
def replace_task(
    data: ValidatedRequest = Depends(validated(REPLACE_TASK)),
    user: UserEntity = Depends(get_current_user),
    tasks: TaskRepository = Depends(_get_tasks),
) -> Dict[str, Any]:
    body: TaskReplace = data.body
    updated = tasks.replace(
        user["id"],
        data.params.id,
        title=body.title,
        status=body.status,
        description=body.description,
        due_date=body.due_date,
    )
    return envelope(_found(updated))


# PUBLIC_INTERFACE
@router.patch(
    "/{id}",
    response_model=Envelope[TaskOut],
    summary="Update task",
    description="Partial update of title, description, status and dueDate. Other fields are ignored.",
    responses={**_INVALID, **_NOT_FOUND},
)
def patch_task(
    data: ValidatedRequest = Depends(validated(PATCH_TASK)),
    user: UserEntity = Depends(get_current_user),
    tasks: TaskRepository = Depends(_get_tasks),
) -> Dict[str, Any]:
    body: TaskPatch = data.body
    return envelope(_found(tasks.patch(user["id"], data.params.id, body.changes())))


# PUBLIC_INTERFACE
@router.delete(
    "/{id}",
    response_model=Envelope[DeletedTask],
    summary="Delete task",
    description="Soft-delete one task.",
    responses={**_INVALID, **_NOT_FOUND},
)
def delete_task(
    data: ValidatedRequest = Depends(validated(TASK_BY_ID)),
    user: UserEntity = Depends(get_current_user),
    tasks: TaskRepository = Depends(_get_tasks),
) -> Dict[str, Any]:
    task_id = data.params.id
    if not tasks.soft_delete(user["id"], task_id):
        raise NotFound("Task not found")
    return envelope({"id": task_id})
