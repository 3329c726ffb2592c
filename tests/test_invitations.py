import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.core.errors import (
    AlreadyMember, AlreadyUsed, DuplicateInvitation, Expired, Forbidden, NotFound, ValidationError, WrongRecipient
)
from backend.app.schemas.invitation import InvitationStatus
from backend.app.schemas.project import ProjectRole
from backend.app.schemas.user import UserProfile
from backend.app.services.invitations import InvitationService, require_pending
from backend.app.services.roster import Roster
from backend.app.services.store import MemoryStore

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
OWNER = UserProfile(id="u1", email="owner@example.com", display_name="Owner", created_at=START)


class Clock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def _service():
    store = MemoryStore()
    clock = Clock()
    return store, clock, InvitationService(store, clock=clock, ttl_hours=72)


async def _create_project(store, members=None):
    members = members or []
    return await store.create_project({
        "id": "p1",
        "name": "Launch",
        "owner_id": OWNER.id,
        "owner_email": OWNER.email,
        "members": members,
        "member_ids": [m["user_id"] for m in members],
        "created_at": START,
    })


def test_invite_accept_and_reuse():
    store, clock, service = _service()

    async def scenario():
        project = await _create_project(store)
        invitation = await service.create(project, "bob@x.com", "Member", OWNER)
        assert invitation["status"] == "pending"
        assert invitation["expires_at"] == START + timedelta(hours=72)
        assert len(invitation["token"]) == 64

        project = await service.accept(invitation["token"], "u2", "Bob@X.com")
        roster = Roster.from_project(project)
        assert roster.resolve_role("u2") == ProjectRole.MEMBER
        assert project["member_ids"] == ["u2"]

        stored = await service.resolve(invitation["token"])
        assert stored["status"] == InvitationStatus.ACCEPTED.value
        assert stored["accepted_by"] == "u2"

        with pytest.raises(AlreadyUsed):
            await service.accept(invitation["token"], "u2", "bob@x.com")
        project = await store.get_project("p1")
        assert project["member_ids"] == ["u2"]

    asyncio.run(scenario())


def test_expired_invitation_reads_and_accepts_as_expired():
    store, clock, service = _service()

    async def scenario():
        project = await _create_project(store)
        invitation = await service.create(project, "bob@x.com", "Viewer", OWNER)
        clock.advance(hours=73)

        resolved = await service.resolve(invitation["token"])
        assert resolved["status"] == "expired"
        with pytest.raises(Expired):
            require_pending(service, resolved)
        with pytest.raises(Expired):
            await service.accept(invitation["token"], "u2", "bob@x.com")

        stored = await store.get_invitation(invitation["id"])
        assert stored["status"] == "pending"
        assert "u2" not in Roster.from_project(await store.get_project("p1"))

    asyncio.run(scenario())


def test_duplicate_pending_invitation_conflicts_until_expiry():
    store, clock, service = _service()

    async def scenario():
        project = await _create_project(store)
        await service.create(project, "bob@x.com", "Member", OWNER)
        with pytest.raises(DuplicateInvitation):
            await service.create(project, "BOB@x.com", "Viewer", OWNER)

        clock.advance(hours=72, seconds=1)
        again = await service.create(project, "bob@x.com", "Viewer", OWNER)
        assert again["status"] == "pending"
        assert len(await store.list_invitations("p1")) == 2

    asyncio.run(scenario())


def test_concurrent_creates_leave_one_pending_invitation():
    store, clock, service = _service()

    async def scenario():
        project = await _create_project(store)
        results = await asyncio.gather(
            *[service.create(project, "bob@x.com", "Member", OWNER) for _ in range(5)],
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, dict)) == 1
        assert all(isinstance(r, DuplicateInvitation) for r in results if not isinstance(r, dict))

    asyncio.run(scenario())


def test_concurrent_accepts_only_one_wins():
    store, clock, service = _service()

    async def scenario():
        project = await _create_project(store)
        invitation = await service.create(project, "bob@x.com", "Member", OWNER)
        results = await asyncio.gather(
            *[service.accept(invitation["token"], "u2", "bob@x.com") for _ in range(3)],
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, dict)) == 1
        assert all(isinstance(r, AlreadyUsed) for r in results if not isinstance(r, dict))
        assert (await store.get_project("p1"))["member_ids"] == ["u2"]

    asyncio.run(scenario())


def test_accept_check_order():
    store, clock, service = _service()

    async def scenario():
        project = await _create_project(store)
        invitation = await service.create(project, "bob@x.com", "Member", OWNER)

        with pytest.raises(NotFound):
            await service.accept("no-such-token", "u2", "bob@x.com")

        # Wrong recipient is reported before expiry
        clock.advance(hours=100)
        with pytest.raises(WrongRecipient):
            await service.accept(invitation["token"], "u3", "eve@x.com")
        with pytest.raises(Expired):
            await service.accept(invitation["token"], "u2", "bob@x.com")

    asyncio.run(scenario())


def test_accepted_invitation_stays_accepted_past_horizon():
    store, clock, service = _service()

    async def scenario():
        project = await _create_project(store)
        invitation = await service.create(project, "bob@x.com", "Member", OWNER)
        await service.accept(invitation["token"], "u2", "bob@x.com")
        clock.advance(hours=100)

        resolved = await service.resolve(invitation["token"])
        assert resolved["status"] == "accepted"
        with pytest.raises(AlreadyUsed):
            require_pending(service, resolved)
        with pytest.raises(AlreadyUsed):
            await service.accept(invitation["token"], "u2", "bob@x.com")

    asyncio.run(scenario())


def test_accept_by_existing_member_keeps_invitation_pending():
    store, clock, service = _service()

    async def scenario():
        project = await _create_project(store)
        invitation = await service.create(project, "bob@x.com", "Member", OWNER)
        # bob joined through another path after the invitation was sent
        await store.update_project("p1", {
            "members": [{"user_id": "u2", "email": "other@x.com", "role": "Viewer"}],
            "member_ids": ["u2"],
        })

        with pytest.raises(AlreadyMember):
            await service.accept(invitation["token"], "u2", "bob@x.com")
        stored = await store.get_invitation(invitation["id"])
        assert stored["status"] == "pending"

    asyncio.run(scenario())


def test_create_validation():
    store, clock, service = _service()
    member = {"user_id": "u3", "email": "member@x.com", "role": "Member"}
    collaborator = {"user_id": "u4", "email": "collab@x.com", "role": "Collaborator"}

    async def scenario():
        project = await _create_project(store, [member, collaborator])

        with pytest.raises(AlreadyMember):
            await service.create(project, "Member@X.com", "Viewer", OWNER)
        with pytest.raises(AlreadyMember):
            await service.create(project, "owner@example.com", "Viewer", OWNER)
        with pytest.raises(ValidationError):
            await service.create(project, "not-an-email", "Viewer", OWNER)
        with pytest.raises(ValidationError):
            await service.create(project, "new@x.com", "Owner", OWNER)

        as_member = UserProfile(id="u3", email="member@x.com", created_at=START)
        with pytest.raises(Forbidden):
            await service.create(project, "new@x.com", "Viewer", as_member)

        as_collaborator = UserProfile(id="u4", email="collab@x.com", created_at=START)
        invitation = await service.create(project, "new@x.com", "Collaborator", as_collaborator)
        assert invitation["invited_by"] == "u4"

    asyncio.run(scenario())


def test_cancel_invitation():
    store, clock, service = _service()

    async def scenario():
        project = await _create_project(store)
        invitation = await service.create(project, "bob@x.com", "Member", OWNER)

        cancelled = await service.cancel(project, invitation["id"], OWNER.id)
        assert cancelled["status"] == "expired"
        assert cancelled["cancelled_by"] == OWNER.id

        with pytest.raises(Expired):
            await service.accept(invitation["token"], "u2", "bob@x.com")
        with pytest.raises(AlreadyUsed):
            await service.cancel(project, invitation["id"], OWNER.id)

        # The slot is free again
        clock.advance(minutes=5)
        await service.create(project, "bob@x.com", "Member", OWNER)
        listed = await service.list_for_project(project, OWNER.id)
        assert [i["status"] for i in listed] == ["pending", "expired"]

    asyncio.run(scenario())
