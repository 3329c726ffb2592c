from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from typing import List
from datetime import datetime, timezone
import logging
import uuid

from backend.app.api.deps import (
    ProjectPublisher, get_blob_store, get_invitation_service, get_publisher, get_store
)
from backend.app.core.auth import get_current_user
from backend.app.core.errors import OwnerCannotLeave
from backend.app.core.storage import delete_quietly
from backend.app.schemas.events import EntityType, RoomEvent
from backend.app.schemas.invitation import InvitationResponse
from backend.app.schemas.project import (
    ColumnsUpdate, ProjectCreate, ProjectResponse, ProjectRole, ProjectUpdate, UpdateMemberRoleRequest
)
from backend.app.schemas.user import UserProfile
from backend.app.services.access import authorize_project, guard, require_owner
from backend.app.services.invitations import InvitationService
from backend.app.services.roster import Roster
from backend.app.services.tasks import task_stats

router = APIRouter()
logger = logging.getLogger("task24.projects")

DEFAULT_COLUMNS = [
    {"name": "Assigned", "order": 0},
    {"name": "In Progress", "order": 1},
    {"name": "Done", "order": 2},
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _project_out(project: dict, user_id: str, **extra) -> dict:
    data = dict(project)
    data["user_role"] = Roster.from_project(project).resolve_role(user_id)
    data.update(extra)
    return data


@router.post("/", response_model=ProjectResponse, status_code=201)
async def create_project(
    request: ProjectCreate,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    """Create a new project. The creator becomes the owner."""
    now = _now()
    project_data = {
        "id": str(uuid.uuid4()),
        "name": request.name,
        "description": request.description,
        "color": request.color,
        "links": [link.model_dump() for link in request.links],
        "tags": request.tags,
        "category_ids": request.category_ids,
        "owner_id": current_user.id,
        "owner_email": current_user.email.lower(),
        "members": [],
        "member_ids": [],
        "columns": [dict(c) for c in DEFAULT_COLUMNS],
        "is_archived": False,
        "archived_at": None,
        "created_at": now,
        "updated_at": now,
    }
    project = await store.create_project(project_data)
    logger.info("Project %s created by %s", project["id"], current_user.id)
    return _project_out(project, current_user.id)


@router.get("/", response_model=List[ProjectResponse])
async def list_projects(
    type: str = Query("all", pattern="^(own|invited|all)$"),
    status: str = Query("active", pattern="^(active|archived)$"),
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    """List projects the user owns or is a member of."""
    now = _now()
    archived = status == "archived"
    projects = []
    for project in await store.list_projects_for_user(current_user.id):
        if bool(project.get("is_archived")) != archived:
            continue
        is_owner = project["owner_id"] == current_user.id
        if type == "own" and not is_owner:
            continue
        if type == "invited" and is_owner:
            continue
        stats = task_stats(await store.list_tasks(project_id=project["id"]), now)
        projects.append(_project_out(
            project, current_user.id, tasks_count=stats["total"], overdue_count=stats["overdue"]
        ))

    projects.sort(key=lambda p: p.get("updated_at") or p["created_at"], reverse=True)
    return projects


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    auth = await authorize_project(store, project_id, current_user.id, message="No access to this project")
    stats = task_stats(await store.list_tasks(project_id=project_id), _now())
    return _project_out(auth.project, current_user.id, stats=stats)


@router.put("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: str,
    request: ProjectUpdate,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    await authorize_project(
        store, project_id, current_user.id, ProjectRole.COLLABORATOR,
        "Insufficient permissions to edit this project",
    )

    updates = request.model_dump(exclude_unset=True, exclude_none=True)
    updates["updated_at"] = _now()
    project = await store.update_project(project_id, updates)

    publisher.publish(project_id, RoomEvent.updated(EntityType.PROJECT, project))
    return _project_out(project, current_user.id)


async def _set_archived(store, project_id: str, archived: bool) -> dict:
    archived_at = _now() if archived else None
    project = await store.update_project(project_id, {
        "is_archived": archived,
        "archived_at": archived_at,
        "updated_at": _now(),
    })
    # Archive state always follows the project
    count = await store.set_project_tasks_archived(project_id, archived, archived_at)
    logger.info("Project %s %s with %d tasks", project_id, "archived" if archived else "restored", count)
    return project


@router.post("/{project_id}/archive")
async def archive_project(
    project_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    auth = await authorize_project(store, project_id, current_user.id)
    require_owner(auth, "Only the owner can archive the project")

    project = await _set_archived(store, project_id, True)
    publisher.publish(project_id, RoomEvent.updated(EntityType.PROJECT, project))
    return {"message": "Project archived"}


@router.post("/{project_id}/restore")
async def restore_project(
    project_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    auth = await authorize_project(store, project_id, current_user.id)
    require_owner(auth, "Only the owner can restore the project")

    project = await _set_archived(store, project_id, False)
    publisher.publish(project_id, RoomEvent.updated(EntityType.PROJECT, project))
    return {"message": "Project restored"}


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    blob_store=Depends(get_blob_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    auth = await authorize_project(store, project_id, current_user.id)
    require_owner(auth, "Only the owner can delete the project")

    tasks = await store.delete_project_tasks(project_id)
    await store.delete_project(project_id)
    for task in tasks:
        for file in task.get("files") or []:
            await run_in_threadpool(delete_quietly, blob_store, file["path"])

    publisher.publish(project_id, RoomEvent.deleted(EntityType.PROJECT, project_id))
    logger.info("Project %s deleted by %s (%d tasks)", project_id, current_user.id, len(tasks))
    return {"message": "Project deleted successfully"}


@router.post("/{project_id}/leave")
async def leave_project(
    project_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    auth = await authorize_project(store, project_id, current_user.id, message="Not a member of this project")
    if auth.is_owner:
        raise OwnerCannotLeave()

    def remove_self(project):
        roster = Roster.from_project(project)
        roster.remove_member(current_user.id)
        return dict(roster.to_fields(), updated_at=_now())

    project = await store.transact_project(project_id, remove_self)
    publisher.publish(project_id, RoomEvent.updated(EntityType.PROJECT, project))
    return {"message": "You have left the project"}


@router.put("/{project_id}/columns")
async def update_columns(
    project_id: str,
    request: ColumnsUpdate,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    await authorize_project(store, project_id, current_user.id, ProjectRole.MEMBER)

    columns = [c.model_dump() for c in sorted(request.columns, key=lambda c: c.order)]
    project = await store.update_project(project_id, {"columns": columns, "updated_at": _now()})
    publisher.publish(project_id, RoomEvent.updated(EntityType.PROJECT, project))
    return {"message": "Columns updated", "columns": columns}


# Member management
@router.delete("/{project_id}/members/{user_id}")
async def remove_member(
    project_id: str,
    user_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    """Remove a member from the project. Owner and Collaborators can remove."""
    denied = "Insufficient permissions to remove members"
    await authorize_project(store, project_id, current_user.id, ProjectRole.COLLABORATOR, denied)

    def remove(project):
        # Re-checked on the transactional read; the caller may have been demoted since
        guard(current_user.id, project, ProjectRole.COLLABORATOR, denied)
        roster = Roster.from_project(project)
        if not roster.remove_member(user_id):
            return None
        return dict(roster.to_fields(), updated_at=_now())

    project = await store.transact_project(project_id, remove)
    publisher.publish(project_id, RoomEvent.updated(EntityType.PROJECT, project))
    return {"message": "Member removed"}


@router.put("/{project_id}/members/{user_id}/role")
async def update_member_role(
    project_id: str,
    user_id: str,
    request: UpdateMemberRoleRequest,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    """Update role for an existing member. Only the owner can change roles."""
    auth = await authorize_project(store, project_id, current_user.id)
    require_owner(auth, "Only the owner can change member roles")

    def change(project):
        roster = Roster.from_project(project)
        roster.change_role(user_id, request.role)
        return dict(roster.to_fields(), updated_at=_now())

    project = await store.transact_project(project_id, change)
    publisher.publish(project_id, RoomEvent.updated(EntityType.PROJECT, project))
    return {"message": f"Member role updated to {request.role.value}"}


# Invitations of a project
@router.get("/{project_id}/invitations", response_model=List[InvitationResponse])
async def list_project_invitations(
    project_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    invitations: InvitationService = Depends(get_invitation_service),
):
    auth = await authorize_project(store, project_id, current_user.id)
    return await invitations.list_for_project(auth.project, current_user.id)


@router.delete("/{project_id}/invitations/{invitation_id}", response_model=InvitationResponse)
async def cancel_invitation(
    project_id: str,
    invitation_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    invitations: InvitationService = Depends(get_invitation_service),
):
    """Cancel a pending invitation; it can no longer be accepted."""
    auth = await authorize_project(store, project_id, current_user.id)
    return await invitations.cancel(auth.project, invitation_id, current_user.id)
