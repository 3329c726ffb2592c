"""Project role hierarchy: Viewer < Member < Collaborator < Owner."""
from typing import Dict, Union

from backend.app.schemas.project import ProjectRole

ROLE_RANK: Dict[ProjectRole, int] = {
    ProjectRole.VIEWER: 1,
    ProjectRole.MEMBER: 2,
    ProjectRole.COLLABORATOR: 3,
    ProjectRole.OWNER: 4,
}

# Owner is implied by project.owner_id and never assigned to a member record
MEMBER_ROLES = frozenset({ProjectRole.COLLABORATOR, ProjectRole.MEMBER, ProjectRole.VIEWER})

RoleLike = Union[ProjectRole, str]


def rank(role: RoleLike) -> int:
    return ROLE_RANK[ProjectRole(role)]


def satisfies(actual: RoleLike, required: RoleLike) -> bool:
    """True if ``actual`` ranks at least as high as ``required``."""
    return rank(actual) >= rank(required)
