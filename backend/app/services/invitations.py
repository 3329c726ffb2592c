"""Project invitation lifecycle.

    pending --accept--> accepted
    pending --expire--> expired

Both outcomes are terminal. Expiry is evaluated lazily: a pending invitation
past ``expires_at`` reads as expired even though the stored status still says
pending. The horizon only applies while pending, so an accepted invitation
stays accepted on every read and accept path.
"""
import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from backend.app.core.config import settings
from backend.app.core.errors import (
    AlreadyMember,
    AlreadyUsed,
    Expired,
    NotFound,
    ValidationError,
    WrongRecipient,
)
from backend.app.schemas.invitation import InvitationStatus
from backend.app.schemas.project import ProjectRole
from backend.app.schemas.user import UserProfile
from backend.app.services.access import guard
from backend.app.services.roles import MEMBER_ROLES
from backend.app.services.roster import Roster, normalize_email
from backend.app.services.store import as_utc

logger = logging.getLogger("task24.invitations")

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvitationService:
    def __init__(self, store, clock: Optional[Callable[[], datetime]] = None, ttl_hours: Optional[int] = None):
        self.store = store
        self.clock = clock or _utcnow
        self.ttl = timedelta(hours=ttl_hours if ttl_hours is not None else settings.INVITATION_TTL_HOURS)

    def is_expired(self, invitation: Dict[str, Any], now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        status = invitation.get("status", InvitationStatus.PENDING.value)
        if status == InvitationStatus.EXPIRED.value:
            return True
        return status == InvitationStatus.PENDING.value and now > as_utc(invitation["expires_at"])

    def effective_status(self, invitation: Dict[str, Any], now: Optional[datetime] = None) -> InvitationStatus:
        if self.is_expired(invitation, now):
            return InvitationStatus.EXPIRED
        return InvitationStatus(invitation.get("status", InvitationStatus.PENDING.value))

    def _with_status(self, invitation: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        invitation = dict(invitation)
        invitation["status"] = self.effective_status(invitation, now).value
        return invitation

    async def create(
        self,
        project: Dict[str, Any],
        email: str,
        role,
        invited_by: UserProfile,
    ) -> Dict[str, Any]:
        guard(invited_by.id, project, ProjectRole.COLLABORATOR, "Insufficient permissions to invite members")

        try:
            role = ProjectRole(role)
        except ValueError:
            raise ValidationError(f"Unknown role: {role}")
        if role not in MEMBER_ROLES:
            raise ValidationError("Invitations can grant Collaborator, Member or Viewer only")

        email = normalize_email(email)
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email address")

        if Roster.from_project(project).contains_email(email):
            raise AlreadyMember(email=email)

        now = self.clock()
        invitation = {
            "id": str(uuid.uuid4()),
            "token": secrets.token_hex(32),
            "project_id": project["id"],
            "project_name": project.get("name", ""),
            "email": email,
            "role": role.value,
            "status": InvitationStatus.PENDING.value,
            "invited_by": invited_by.id,
            "invited_by_email": invited_by.email,
            "invited_by_name": invited_by.display_name,
            "expires_at": now + self.ttl,
            "created_at": now,
        }
        await self.store.create_invitation(invitation, now)
        logger.info("Invitation %s created for %s on project %s", invitation["id"], email, project["id"])
        return invitation

    async def resolve(self, token: str) -> Dict[str, Any]:
        invitation = await self.store.get_invitation_by_token(token) if token else None
        if invitation is None:
            raise NotFound("Invitation not found")
        return self._with_status(invitation)

    async def accept(self, token: str, identity: str, email: str) -> Dict[str, Any]:
        """
        Redeem ``token`` for ``identity``. The roster insert and the status
        flip commit together; a failed membership insert leaves the
        invitation pending. Returns the updated project.
        """
        invitation = await self.store.get_invitation_by_token(token) if token else None
        if invitation is None:
            raise NotFound("Invitation not found")

        now = self.clock()
        accepting_email = normalize_email(email)

        def apply(current, project):
            if current["email"] != accepting_email:
                raise WrongRecipient()
            if self.is_expired(current, now):
                raise Expired()
            if current["status"] != InvitationStatus.PENDING.value:
                raise AlreadyUsed()
            if project is None:
                raise NotFound("Project not found")

            roster = Roster.from_project(project)
            roster.add_member(identity, current["role"], email=accepting_email, added_at=now)
            invitation_updates = {
                "status": InvitationStatus.ACCEPTED.value,
                "accepted_at": now,
                "accepted_by": identity,
            }
            project_updates = dict(roster.to_fields(), updated_at=now)
            return invitation_updates, project_updates

        _, project = await self.store.transact_invitation(invitation["id"], apply)
        logger.info("Invitation %s accepted by %s", invitation["id"], identity)
        return project

    async def cancel(self, project: Dict[str, Any], invitation_id: str, actor: str) -> Dict[str, Any]:
        """Explicitly expire a pending invitation of ``project``."""
        guard(actor, project, ProjectRole.COLLABORATOR, "Insufficient permissions to cancel invitations")
        now = self.clock()

        def apply(current, _project):
            if current["project_id"] != project["id"]:
                raise NotFound("Invitation not found")
            if self.effective_status(current, now) != InvitationStatus.PENDING:
                raise AlreadyUsed("Only pending invitations can be cancelled")
            return {"status": InvitationStatus.EXPIRED.value, "cancelled_at": now, "cancelled_by": actor}, None

        invitation, _ = await self.store.transact_invitation(invitation_id, apply)
        logger.info("Invitation %s cancelled by %s", invitation_id, actor)
        return invitation

    async def list_for_project(self, project: Dict[str, Any], actor: str) -> List[Dict[str, Any]]:
        guard(actor, project, None, "Not authorized to view invitations")
        now = self.clock()
        invitations = await self.store.list_invitations(project["id"])
        invitations.sort(key=lambda i: as_utc(i["created_at"]), reverse=True)
        return [self._with_status(i, now) for i in invitations]


def require_pending(service: InvitationService, invitation: Dict[str, Any]) -> Dict[str, Any]:
    """Raise the error a client would get when trying to use ``invitation`` now."""
    status = service.effective_status(invitation)
    if status == InvitationStatus.EXPIRED:
        raise Expired()
    if status != InvitationStatus.PENDING:
        raise AlreadyUsed()
    return invitation

