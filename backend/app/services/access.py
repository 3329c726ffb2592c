"""Request-time authorization for project and task operations."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from backend.app.core.errors import Forbidden, NotFound
from backend.app.schemas.project import ProjectRole
from backend.app.services.roster import Roster

logger = logging.getLogger("task24.access")


@dataclass(frozen=True)
class Authorized:
    """Outcome of a successful guard check, carrying the caller's resolved role."""
    user_id: str
    role: Optional[ProjectRole]
    project: Optional[Dict[str, Any]] = None

    @property
    def is_owner(self) -> bool:
        return self.role == ProjectRole.OWNER


def guard(
    identity: str,
    project: Dict[str, Any],
    required_role: Optional[ProjectRole] = None,
    message: Optional[str] = None,
) -> Authorized:
    roster = Roster.from_project(project)
    if not roster.has_access(identity, required_role):
        logger.info(
            "Denied %s on project %s (required %s)",
            identity, project.get("id"), required_role.value if required_role else "any",
        )
        raise Forbidden(message)
    return Authorized(user_id=identity, role=roster.resolve_role(identity), project=project)


def require_owner(authorized: Authorized, message: Optional[str] = None) -> Authorized:
    if not authorized.is_owner:
        raise Forbidden(message or "Only the project owner can perform this action")
    return authorized


async def load_project(store, project_id: str) -> Dict[str, Any]:
    project = await store.get_project(project_id)
    if project is None:
        raise NotFound("Project not found")
    return project


async def authorize_project(
    store,
    project_id: str,
    identity: str,
    required_role: Optional[ProjectRole] = None,
    message: Optional[str] = None,
) -> Authorized:
    project = await load_project(store, project_id)
    return guard(identity, project, required_role, message)


async def authorize_task(
    store,
    task: Dict[str, Any],
    identity: str,
    required_role: Optional[ProjectRole] = None,
    message: Optional[str] = None,
) -> Authorized:
    """
    Project tasks delegate to the project guard; personal tasks are
    reachable by their creator only.
    """
    project_id = task.get("project_id")
    if project_id:
        project = await store.get_project(project_id)
        if project is None:
            raise Forbidden(message or "No access to this task")
        return guard(identity, project, required_role, message)

    if task.get("created_by") != identity:
        raise Forbidden(message or "No access to this task")
    return Authorized(user_id=identity, role=None)
