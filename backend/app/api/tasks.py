from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from typing import List, Optional
from datetime import datetime, timezone
import logging
import uuid

from backend.app.api.deps import ProjectPublisher, get_blob_store, get_publisher, get_store
from backend.app.core.auth import get_current_user
from backend.app.core.config import settings
from backend.app.core.errors import NotFound, ValidationError
from backend.app.core.storage import attachment_key, delete_quietly
from backend.app.schemas.events import EntityType, RoomEvent
from backend.app.schemas.project import ProjectRole
from backend.app.schemas.task import (
    DEFAULT_TASK_STATUS, TaskCreate, TaskFile, TaskPriority, TaskReorder, TaskResponse, TaskUpdate
)
from backend.app.schemas.user import UserProfile
from backend.app.services.access import authorize_project, authorize_task
from backend.app.services.roster import Roster
from backend.app.services.tasks import is_overdue

router = APIRouter()
logger = logging.getLogger("task24.tasks")

ALLOWED_MIMETYPES = {
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "image/png",
    "image/jpeg",
    "application/zip",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _task_out(task: dict, now: Optional[datetime] = None) -> dict:
    data = dict(task)
    data["is_overdue"] = is_overdue(task, now or _now())
    return data


def _sort_key(task: dict):
    created = task.get("created_at")
    return (task.get("order", 0), -created.timestamp() if created else 0)


async def _get_task(store, task_id: str) -> dict:
    task = await store.get_task(task_id)
    if task is None:
        raise NotFound("Task not found")
    return task


async def _check_references(store, project: Optional[dict], user_id: str, category_id=None, assignee_id=None):
    if category_id:
        category = await store.get_category(category_id)
        if category is None or category.get("created_by") != user_id:
            raise ValidationError("Unknown category", category_id=category_id)
    if assignee_id and project is not None:
        if not Roster.from_project(project).has_access(assignee_id):
            raise ValidationError("Assignee has no access to this project", assignee_id=assignee_id)


async def _accessible_project_ids(store, user_id: str, include_archived: bool) -> set:
    projects = await store.list_projects_for_user(user_id)
    return {
        p["id"] for p in projects
        if include_archived or not p.get("is_archived")
    }


def _publish(publisher: ProjectPublisher, task: dict, event: RoomEvent) -> None:
    publisher.publish(task.get("project_id"), event)


@router.get("/", response_model=List[TaskResponse])
async def list_tasks(
    project_id: Optional[str] = None,
    personal: bool = False,
    status: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[TaskPriority] = None,
    assignee: Optional[str] = None,
    search: Optional[str] = None,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    """
    Tasks of one project, the caller's personal tasks, or, with neither
    filter, the dashboard: personal tasks plus tasks of every active project
    the caller can access.
    """
    filters = {"is_archived": False}
    if status:
        filters["status"] = status
    if category:
        filters["category_id"] = category
    if priority:
        filters["priority"] = priority.value
    if assignee:
        filters["assignee_id"] = assignee

    if project_id:
        await authorize_project(store, project_id, current_user.id, message="No access to this project")
        tasks = await store.list_tasks(project_id=project_id, **filters)
    elif personal:
        tasks = await store.list_tasks(project_id=None, created_by=current_user.id, **filters)
    else:
        project_ids = await _accessible_project_ids(store, current_user.id, include_archived=False)
        tasks = [
            t for t in await store.list_tasks(**filters)
            if t.get("project_id") in project_ids
            or (not t.get("project_id") and t.get("created_by") == current_user.id)
        ]

    if search:
        needle = search.lower()
        tasks = [
            t for t in tasks
            if needle in t.get("title", "").lower() or needle in (t.get("description") or "").lower()
        ]

    now = _now()
    return [_task_out(t, now) for t in sorted(tasks, key=_sort_key)]


@router.get("/archived", response_model=List[TaskResponse])
async def list_archived_tasks(
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    project_ids = await _accessible_project_ids(store, current_user.id, include_archived=True)
    tasks = [
        t for t in await store.list_tasks(is_archived=True)
        if t.get("project_id") in project_ids
        or (not t.get("project_id") and t.get("created_by") == current_user.id)
    ]
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    tasks.sort(key=lambda t: t.get("archived_at") or epoch, reverse=True)
    now = _now()
    return [_task_out(t, now) for t in tasks]


@router.post("/reorder")
async def reorder_tasks(
    request: TaskReorder,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    """Drag-and-drop board update. Every task is checked before any is written."""
    tasks = []
    for item in request.tasks:
        task = await _get_task(store, item.id)
        await authorize_task(store, task, current_user.id, ProjectRole.MEMBER, "No permission to move this task")
        tasks.append((task, item))

    now = _now()
    for task, item in tasks:
        updated = await store.update_task(task["id"], {
            "status": item.status,
            "order": item.order,
            "updated_at": now,
        })
        _publish(publisher, updated, RoomEvent.updated(EntityType.TASK, _task_out(updated, now)))

    return {"message": "Task order updated", "count": len(tasks)}


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    task = await _get_task(store, task_id)
    await authorize_task(store, task, current_user.id, message="No access to this task")
    return _task_out(task)


@router.post("/", response_model=TaskResponse, status_code=201)
async def create_task(
    request: TaskCreate,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    project = None
    if request.project_id:
        auth = await authorize_project(
            store, request.project_id, current_user.id, ProjectRole.MEMBER, "No access to this project"
        )
        project = auth.project
    await _check_references(store, project, current_user.id, request.category_id, request.assignee_id)

    now = _now()
    task_data = request.model_dump()
    task_data.update({
        "id": str(uuid.uuid4()),
        "priority": request.priority.value,
        "status": request.status or DEFAULT_TASK_STATUS,
        "files": [],
        "created_by": current_user.id,
        "is_personal": project is None,
        "is_archived": False,
        "archived_at": None,
        "order": 0,
        "created_at": now,
        "updated_at": now,
    })
    task = await store.create_task(task_data)

    out = _task_out(task, now)
    _publish(publisher, task, RoomEvent.created(EntityType.TASK, out))
    return out


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: str,
    request: TaskUpdate,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    task = await _get_task(store, task_id)
    auth = await authorize_task(
        store, task, current_user.id, ProjectRole.MEMBER, "No permission to edit this task"
    )

    updates = request.model_dump(exclude_unset=True)
    # title, priority, status and tags cannot be cleared
    for key in ("title", "priority", "status", "tags"):
        if key in updates and updates[key] is None:
            del updates[key]
    if "description" in updates and updates["description"] is None:
        updates["description"] = ""
    if updates.get("priority") is not None:
        updates["priority"] = TaskPriority(updates["priority"]).value
    await _check_references(
        store, auth.project, current_user.id, updates.get("category_id"), updates.get("assignee_id")
    )

    now = _now()
    updates["updated_at"] = now
    task = await store.update_task(task_id, updates)

    out = _task_out(task, now)
    _publish(publisher, task, RoomEvent.updated(EntityType.TASK, out))
    return out


@router.post("/{task_id}/archive")
async def archive_task(
    task_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    task = await _get_task(store, task_id)
    await authorize_task(store, task, current_user.id, ProjectRole.MEMBER, "No permission to archive this task")

    now = _now()
    task = await store.update_task(task_id, {"is_archived": True, "archived_at": now, "updated_at": now})
    _publish(publisher, task, RoomEvent.updated(EntityType.TASK, _task_out(task, now)))
    return {"message": "Task archived"}


@router.post("/{task_id}/restore")
async def restore_task(
    task_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    task = await _get_task(store, task_id)
    if task.get("project_id") and await store.get_project(task["project_id"]) is None:
        raise ValidationError("Cannot restore task: its project was deleted")
    await authorize_task(store, task, current_user.id, ProjectRole.MEMBER, "No permission to restore this task")

    now = _now()
    task = await store.update_task(task_id, {"is_archived": False, "archived_at": None, "updated_at": now})
    _publish(publisher, task, RoomEvent.updated(EntityType.TASK, _task_out(task, now)))
    return {"message": "Task restored"}


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    blob_store=Depends(get_blob_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    task = await _get_task(store, task_id)
    await authorize_task(
        store, task, current_user.id, ProjectRole.COLLABORATOR, "No permission to delete this task"
    )

    await store.delete_task(task_id)
    for file in task.get("files") or []:
        await run_in_threadpool(delete_quietly, blob_store, file["path"])

    _publish(publisher, task, RoomEvent.deleted(EntityType.TASK, task_id))
    logger.info("Task %s deleted by %s", task_id, current_user.id)
    return {"message": "Task deleted successfully"}


# Attachments
@router.post("/{task_id}/files", response_model=TaskResponse, status_code=201)
async def upload_task_file(
    task_id: str,
    file: UploadFile = File(...),
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    blob_store=Depends(get_blob_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    task = await _get_task(store, task_id)
    await authorize_task(store, task, current_user.id, ProjectRole.MEMBER, "No permission to attach files")

    if not file.filename:
        raise HTTPException(status_code=400, detail="File has no name")
    content_type = file.content_type or "application/octet-stream"
    if content_type not in ALLOWED_MIMETYPES:
        raise HTTPException(
            status_code=400,
            detail="Unsupported file type. Allowed: PDF, DOCX, XLSX, PNG, JPG, ZIP",
        )

    data = await file.read()
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File is too large")

    key = attachment_key(task_id, file.filename)
    try:
        path = await run_in_threadpool(blob_store.store, data, key, content_type)
    except Exception as e:
        logger.error("Failed to store attachment for task %s: %s", task_id, e)
        raise HTTPException(status_code=500, detail="Failed to store file")

    now = _now()
    record = TaskFile(
        id=uuid.uuid4().hex,
        name=path.rsplit("/", 1)[-1],
        original_name=file.filename,
        path=path,
        size=len(data),
        mimetype=content_type,
        uploaded_by=current_user.id,
        uploaded_at=now,
    ).model_dump()
    files = list(task.get("files") or []) + [record]
    task = await store.update_task(task_id, {"files": files, "updated_at": now})

    out = _task_out(task, now)
    _publish(publisher, task, RoomEvent.updated(EntityType.TASK, out))
    return out


@router.delete("/{task_id}/files/{file_id}", response_model=TaskResponse)
async def delete_task_file(
    task_id: str,
    file_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    blob_store=Depends(get_blob_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    task = await _get_task(store, task_id)
    await authorize_task(store, task, current_user.id, ProjectRole.MEMBER, "No permission to remove files")

    files = list(task.get("files") or [])
    match = next((f for f in files if f["id"] == file_id), None)
    if match is None:
        raise NotFound("File not found")

    now = _now()
    task = await store.update_task(task_id, {
        "files": [f for f in files if f["id"] != file_id],
        "updated_at": now,
    })
    await run_in_threadpool(delete_quietly, blob_store, match["path"])

    out = _task_out(task, now)
    _publish(publisher, task, RoomEvent.updated(EntityType.TASK, out))
    return out
