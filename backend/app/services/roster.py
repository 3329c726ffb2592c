"""Per-project membership roster.

A project document stores ``owner_id`` and a ``members`` list that never
contains the owner. ``Roster`` loads both into a single identity -> role
mapping whose first entry is the owner, so every lookup goes through one
table. Mutations work on the in-memory roster; callers persist the result
of ``to_fields()`` inside a store transaction.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from backend.app.core.errors import (
    AlreadyMember,
    CannotModifyOwner,
    CannotRemoveOwner,
    MemberNotFound,
    ValidationError,
)
from backend.app.schemas.project import ProjectRole
from backend.app.services.roles import MEMBER_ROLES, satisfies


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _member_role(role) -> ProjectRole:
    try:
        role = ProjectRole(role)
    except ValueError:
        raise ValidationError(f"Unknown role: {role}")
    if role not in MEMBER_ROLES:
        raise ValidationError(f"Role {role.value} cannot be assigned to a member")
    return role


class Roster:
    def __init__(self, owner_id: str, members: Optional[List[Dict[str, Any]]] = None, owner_email: Optional[str] = None):
        self._entries: Dict[str, Dict[str, Any]] = {
            owner_id: {
                "user_id": owner_id,
                "email": normalize_email(owner_email) or None,
                "role": ProjectRole.OWNER,
                "added_at": None,
            }
        }
        for member in members or []:
            user_id = member.get("user_id")
            # Stray owner or duplicate records are ignored on load
            if not user_id or user_id in self._entries:
                continue
            self._entries[user_id] = {
                "user_id": user_id,
                "email": normalize_email(member.get("email")) or None,
                "role": _member_role(member.get("role", ProjectRole.VIEWER.value)),
                "added_at": member.get("added_at"),
            }

    @classmethod
    def from_project(cls, project: Dict[str, Any]) -> "Roster":
        return cls(project["owner_id"], project.get("members", []), project.get("owner_email"))

    @property
    def owner_id(self) -> str:
        return next(iter(self._entries))

    def is_owner(self, identity: Optional[str]) -> bool:
        return identity == self.owner_id

    def resolve_role(self, identity: Optional[str]) -> Optional[ProjectRole]:
        entry = self._entries.get(identity) if identity else None
        return entry["role"] if entry else None

    def has_access(self, identity: Optional[str], required_role: Optional[ProjectRole] = None) -> bool:
        role = self.resolve_role(identity)
        if role is None:
            return False
        return required_role is None or satisfies(role, required_role)

    def contains_email(self, email: Optional[str]) -> bool:
        email = normalize_email(email)
        return bool(email) and any(e["email"] == email for e in self._entries.values())

    def add_member(self, identity: str, role, email: Optional[str] = None, added_at: Optional[datetime] = None) -> None:
        if identity in self._entries:
            raise AlreadyMember(user_id=identity)
        self._entries[identity] = {
            "user_id": identity,
            "email": normalize_email(email) or None,
            "role": _member_role(role),
            "added_at": added_at,
        }

    def remove_member(self, identity: str) -> bool:
        """Remove a member; returns False when the identity was not on the roster."""
        if self.is_owner(identity):
            raise CannotRemoveOwner()
        return self._entries.pop(identity, None) is not None

    def change_role(self, identity: str, new_role) -> None:
        if self.is_owner(identity):
            raise CannotModifyOwner()
        entry = self._entries.get(identity)
        if entry is None:
            raise MemberNotFound(user_id=identity)
        entry["role"] = _member_role(new_role)

    def members(self) -> List[Dict[str, Any]]:
        """Persisted member records, owner excluded, in insertion order."""
        return [
            {
                "user_id": e["user_id"],
                "email": e["email"],
                "role": e["role"].value,
                "added_at": e["added_at"],
            }
            for user_id, e in self._entries.items()
            if user_id != self.owner_id
        ]

    def to_fields(self) -> Dict[str, Any]:
        members = self.members()
        return {
            "members": members,
            "member_ids": [m["user_id"] for m in members],
        }

    def __contains__(self, identity: str) -> bool:
        return identity in self._entries

    def __len__(self) -> int:
        return len(self._entries)
