import itertools

import pytest

from backend.app.core.errors import (
    AlreadyMember, CannotModifyOwner, CannotRemoveOwner, MemberNotFound, ValidationError
)
from backend.app.schemas.project import ProjectRole
from backend.app.services.roles import rank, satisfies
from backend.app.services.roster import Roster

ORDERED = [ProjectRole.VIEWER, ProjectRole.MEMBER, ProjectRole.COLLABORATOR, ProjectRole.OWNER]


def _project(**overrides):
    project = {
        "id": "p1",
        "owner_id": "owner",
        "owner_email": "owner@example.com",
        "members": [
            {"user_id": "viewer", "email": "viewer@example.com", "role": "Viewer"},
            {"user_id": "member", "email": "member@example.com", "role": "Member"},
        ],
    }
    project.update(overrides)
    return project


def test_rank_is_total_order():
    assert [rank(r) for r in ORDERED] == [1, 2, 3, 4]


def test_satisfies_follows_rank():
    for low, high in itertools.combinations(ORDERED, 2):
        assert satisfies(high, low)
        assert not satisfies(low, high)
    for role in ORDERED:
        assert satisfies(role, role)


def test_owner_has_every_role_without_member_record():
    roster = Roster.from_project(_project())
    assert "owner" not in [m["user_id"] for m in roster.members()]
    for role in ORDERED:
        assert roster.has_access("owner", role)
    assert roster.resolve_role("owner") == ProjectRole.OWNER


def test_resolve_role_and_access():
    roster = Roster.from_project(_project())
    assert roster.resolve_role("member") == ProjectRole.MEMBER
    assert roster.resolve_role("stranger") is None
    assert roster.has_access("viewer")
    assert not roster.has_access("viewer", ProjectRole.MEMBER)
    assert roster.has_access("member", ProjectRole.MEMBER)
    assert not roster.has_access("member", ProjectRole.COLLABORATOR)
    assert not roster.has_access("stranger")


def test_owner_record_in_members_is_ignored():
    project = _project(members=[
        {"user_id": "owner", "role": "Viewer"},
        {"user_id": "member", "role": "Member"},
        {"user_id": "member", "role": "Collaborator"},
    ])
    roster = Roster.from_project(project)
    assert roster.resolve_role("owner") == ProjectRole.OWNER
    assert roster.resolve_role("member") == ProjectRole.MEMBER
    assert len(roster) == 2


def test_add_member():
    roster = Roster.from_project(_project())
    roster.add_member("new", "Collaborator", email="New@Example.com")
    assert roster.has_access("new", ProjectRole.COLLABORATOR)
    assert roster.contains_email("new@example.com")
    assert roster.to_fields()["member_ids"] == ["viewer", "member", "new"]


def test_add_owner_or_existing_member_fails():
    roster = Roster.from_project(_project())
    for role in ("Viewer", "Member", "Collaborator"):
        with pytest.raises(AlreadyMember):
            roster.add_member("owner", role)
    with pytest.raises(AlreadyMember):
        roster.add_member("member", "Viewer")


def test_owner_role_cannot_be_assigned():
    roster = Roster.from_project(_project())
    with pytest.raises(ValidationError):
        roster.add_member("new", "Owner")
    with pytest.raises(ValidationError):
        roster.add_member("new", "Admin")


def test_remove_member():
    roster = Roster.from_project(_project())
    with pytest.raises(CannotRemoveOwner):
        roster.remove_member("owner")
    assert roster.remove_member("viewer") is True
    assert roster.remove_member("viewer") is False
    assert "viewer" not in roster


def test_change_role():
    roster = Roster.from_project(_project())
    with pytest.raises(CannotModifyOwner):
        roster.change_role("owner", "Viewer")
    with pytest.raises(MemberNotFound):
        roster.change_role("stranger", "Viewer")

    roster.change_role("viewer", ProjectRole.COLLABORATOR)
    assert roster.has_access("viewer", ProjectRole.COLLABORATOR)
    assert roster.members()[0]["role"] == "Collaborator"
