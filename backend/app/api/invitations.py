from fastapi import APIRouter, BackgroundTasks, Depends

from backend.app.api.deps import ProjectPublisher, get_invitation_service, get_notifier, get_publisher, get_store
from backend.app.core.auth import get_current_user
from backend.app.schemas.events import EntityType, RoomEvent
from backend.app.schemas.invitation import (
    InvitationAccept, InvitationCreate, InvitationCreated, InvitationPreview
)
from backend.app.schemas.project import ProjectResponse
from backend.app.schemas.user import UserProfile
from backend.app.services.access import load_project
from backend.app.services.invitations import InvitationService, require_pending
from backend.app.services.roster import Roster

router = APIRouter()


@router.post("/", response_model=InvitationCreated, status_code=201)
async def create_invitation(
    request: InvitationCreate,
    background_tasks: BackgroundTasks,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    notifier=Depends(get_notifier),
    invitations: InvitationService = Depends(get_invitation_service),
):
    """Invite someone to a project by email. The email is sent after the response."""
    project = await load_project(store, request.project_id)
    invitation = await invitations.create(project, request.email, request.role, current_user)
    background_tasks.add_task(notifier.send_project_invitation, invitation)
    return invitation


@router.get("/token/{token}", response_model=InvitationPreview)
async def get_invitation_by_token(
    token: str,
    store=Depends(get_store),
    invitations: InvitationService = Depends(get_invitation_service),
):
    """Public lookup used by the invitation landing page."""
    invitation = require_pending(invitations, await invitations.resolve(token))
    project = await load_project(store, invitation["project_id"])
    return {
        "project": {
            "id": project["id"],
            "name": project["name"],
            "color": project.get("color"),
            "description": project.get("description"),
        },
        "role": invitation["role"],
        "status": invitation["status"],
        "invited_by": invitation.get("invited_by_name") or invitation["invited_by"],
        "invited_by_email": invitation.get("invited_by_email"),
        "expires_at": invitation["expires_at"],
        "created_at": invitation["created_at"],
    }


@router.post("/accept", response_model=ProjectResponse)
async def accept_invitation(
    request: InvitationAccept,
    current_user: UserProfile = Depends(get_current_user),
    invitations: InvitationService = Depends(get_invitation_service),
    publisher: ProjectPublisher = Depends(get_publisher),
):
    project = await invitations.accept(request.token, current_user.id, current_user.email)
    publisher.publish(project["id"], RoomEvent.updated(EntityType.PROJECT, project))

    data = dict(project)
    data["user_role"] = Roster.from_project(project).resolve_role(current_user.id)
    return data
