"""Document store for users, projects, tasks, categories and invitations.

Two backends share one async interface:

- ``MemoryStore`` keeps documents in process and serialises writes per
  entity with asyncio locks (development and tests).
- ``FirestoreStore`` runs read-check-write operations inside Firestore
  transactions so concurrent requests cannot both win (production).

Operations that must preserve an invariant take a callback which inspects
the current document(s) and returns the fields to write; the backend applies
the result atomically or not at all.
"""
import asyncio
import copy
import hashlib
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from fastapi.concurrency import run_in_threadpool

from backend.app.core.config import settings
from backend.app.core.errors import DuplicateInvitation, NotFound
from backend.app.schemas.invitation import InvitationStatus

logger = logging.getLogger("task24.store")

COLLECTIONS = ("users", "projects", "tasks", "categories", "invitations")
FIRESTORE_BATCH_LIMIT = 450
ENTITY_NAMES = {
    "users": "User",
    "projects": "Project",
    "tasks": "Task",
    "categories": "Category",
    "invitations": "Invitation",
}

Document = Dict[str, Any]
ProjectMutator = Callable[[Document], Optional[Document]]
InvitationMutator = Callable[[Document, Optional[Document]], Tuple[Optional[Document], Optional[Document]]]


def as_utc(value):
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_live_invitation(invitation: Document, now: datetime) -> bool:
    """Pending and not yet past its expiry horizon."""
    return (
        invitation.get("status") == InvitationStatus.PENDING.value
        and as_utc(invitation["expires_at"]) > now
    )


def _invitation_slot_id(project_id: str, email: str) -> str:
    return hashlib.sha256(f"{project_id}:{email}".encode("utf-8")).hexdigest()


def _matches(doc: Document, filters: Dict[str, Any]) -> bool:
    return all(doc.get(field) == value for field, value in filters.items())


class MemoryStore:
    """In-process store (safe for a single worker only)."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = {name: {} for name in COLLECTIONS}
        # Entries vanish once no coroutine holds or awaits the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _get(self, collection: str, doc_id: str) -> Optional[Document]:
        doc = self._collections[collection].get(str(doc_id))
        return copy.deepcopy(doc) if doc is not None else None

    def _put(self, collection: str, data: Document) -> Document:
        self._collections[collection][str(data["id"])] = copy.deepcopy(data)
        return copy.deepcopy(data)

    def _where(self, collection: str, predicate: Callable[[Document], bool]) -> List[Document]:
        return [copy.deepcopy(d) for d in self._collections[collection].values() if predicate(d)]

    async def _update(self, collection: str, doc_id: str, updates: Document) -> Document:
        async with self._lock(f"{collection}:{doc_id}"):
            doc = self._get(collection, doc_id)
            if doc is None:
                raise NotFound(f"{ENTITY_NAMES[collection]} not found")
            doc.update(updates)
            return self._put(collection, doc)

    async def ping(self) -> bool:
        return True

    # Users
    async def get_user(self, user_id: str) -> Optional[Document]:
        return self._get("users", user_id)

    async def get_or_create_user(self, data: Document) -> Tuple[Document, bool]:
        async with self._lock(f"users:{data['id']}"):
            existing = self._get("users", data["id"])
            if existing is not None:
                return existing, False
            return self._put("users", data), True

    async def update_user(self, user_id: str, updates: Document) -> Document:
        return await self._update("users", user_id, updates)

    # Projects
    async def create_project(self, data: Document) -> Document:
        return self._put("projects", data)

    async def get_project(self, project_id: str) -> Optional[Document]:
        return self._get("projects", project_id)

    async def update_project(self, project_id: str, updates: Document) -> Document:
        return await self._update("projects", project_id, updates)

    async def transact_project(self, project_id: str, fn: ProjectMutator) -> Document:
        async with self._lock(f"projects:{project_id}"):
            project = self._get("projects", project_id)
            if project is None:
                raise NotFound("Project not found")
            updates = fn(copy.deepcopy(project)) or {}
            project.update(updates)
            return self._put("projects", project)

    async def delete_project(self, project_id: str) -> None:
        async with self._lock(f"projects:{project_id}"):
            self._collections["projects"].pop(str(project_id), None)

    async def list_projects_for_user(self, user_id: str) -> List[Document]:
        return self._where(
            "projects",
            lambda p: p.get("owner_id") == user_id or user_id in (p.get("member_ids") or []),
        )

    async def count_projects_with_category(self, category_id: str) -> int:
        return len(self._where(
            "projects",
            lambda p: category_id in (p.get("category_ids") or []) and not p.get("is_archived"),
        ))

    # Tasks
    async def create_task(self, data: Document) -> Document:
        return self._put("tasks", data)

    async def get_task(self, task_id: str) -> Optional[Document]:
        return self._get("tasks", task_id)

    async def update_task(self, task_id: str, updates: Document) -> Document:
        return await self._update("tasks", task_id, updates)

    async def delete_task(self, task_id: str) -> None:
        self._collections["tasks"].pop(str(task_id), None)

    async def list_tasks(self, **filters) -> List[Document]:
        return self._where("tasks", lambda t: _matches(t, filters))

    async def set_project_tasks_archived(self, project_id: str, archived: bool, archived_at: Optional[datetime]) -> int:
        count = 0
        for task in self._collections["tasks"].values():
            if task.get("project_id") == project_id:
                task["is_archived"] = archived
                task["archived_at"] = archived_at
                count += 1
        return count

    async def delete_project_tasks(self, project_id: str) -> List[Document]:
        removed = self._where("tasks", lambda t: t.get("project_id") == project_id)
        for task in removed:
            self._collections["tasks"].pop(task["id"], None)
        return removed

    # Categories
    async def create_category(self, data: Document) -> Document:
        return self._put("categories", data)

    async def get_category(self, category_id: str) -> Optional[Document]:
        return self._get("categories", category_id)

    async def update_category(self, category_id: str, updates: Document) -> Document:
        return await self._update("categories", category_id, updates)

    async def delete_category(self, category_id: str) -> None:
        self._collections["categories"].pop(str(category_id), None)

    async def list_categories(self, created_by: str) -> List[Document]:
        return self._where("categories", lambda c: c.get("created_by") == created_by)

    async def detach_category(self, category_id: str) -> None:
        for task in self._collections["tasks"].values():
            if task.get("category_id") == category_id:
                task["category_id"] = None
        for project in self._collections["projects"].values():
            if category_id in (project.get("category_ids") or []):
                project["category_ids"] = [c for c in project["category_ids"] if c != category_id]

    # Invitations
    async def create_invitation(self, data: Document, now: datetime) -> Document:
        async with self._lock(f"invitation_slots:{_invitation_slot_id(data['project_id'], data['email'])}"):
            for existing in self._collections["invitations"].values():
                if (
                    existing.get("project_id") == data["project_id"]
                    and existing.get("email") == data["email"]
                    and is_live_invitation(existing, now)
                ):
                    raise DuplicateInvitation(email=data["email"])
            return self._put("invitations", data)

    async def get_invitation(self, invitation_id: str) -> Optional[Document]:
        return self._get("invitations", invitation_id)

    async def get_invitation_by_token(self, token: str) -> Optional[Document]:
        found = self._where("invitations", lambda i: i.get("token") == token)
        return found[0] if found else None

    async def list_invitations(self, project_id: str) -> List[Document]:
        return self._where("invitations", lambda i: i.get("project_id") == project_id)

    async def transact_invitation(self, invitation_id: str, fn: InvitationMutator) -> Tuple[Document, Optional[Document]]:
        async with self._lock(f"invitations:{invitation_id}"):
            invitation = self._get("invitations", invitation_id)
            if invitation is None:
                raise NotFound("Invitation not found")
            project_id = invitation["project_id"]
            async with self._lock(f"projects:{project_id}"):
                project = self._get("projects", project_id)
                invitation_updates, project_updates = fn(
                    copy.deepcopy(invitation), copy.deepcopy(project)
                )
                # Both writes happen after fn returned, so a raised error leaves both untouched
                if invitation_updates:
                    invitation.update(invitation_updates)
                    self._put("invitations", invitation)
                if project_updates and project is not None:
                    project.update(project_updates)
                    self._put("projects", project)
                return invitation, project


class FirestoreStore:
    """
    Firestore-backed store (safe for multi-instance deployments).

    The Firestore client is synchronous; calls run in the threadpool so a
    round trip suspends only the calling request.
    """

    def __init__(self, client=None):
        if client is None:
            from backend.app.core.firebase import get_firestore_client  # lazy import to avoid early init issues
            client = get_firestore_client()
        self._db = client

    def _col(self, name: str):
        return self._db.collection(name)

    # Sync helpers
    def _get_doc(self, collection: str, doc_id: str) -> Optional[Document]:
        snap = self._col(collection).document(str(doc_id)).get()
        return snap.to_dict() if snap.exists else None

    def _set_doc(self, collection: str, data: Document) -> Document:
        self._col(collection).document(str(data["id"])).set(data)
        return data

    def _update_doc(self, collection: str, doc_id: str, updates: Document) -> Document:
        from google.api_core import exceptions as google_exceptions

        ref = self._col(collection).document(str(doc_id))
        try:
            ref.update(updates)
        except google_exceptions.NotFound:
            raise NotFound(f"{ENTITY_NAMES[collection]} not found")
        snap = ref.get()
        return snap.to_dict() if snap.exists else None

    def _delete_doc(self, collection: str, doc_id: str) -> None:
        self._col(collection).document(str(doc_id)).delete()

    def _query(self, collection: str, *conditions) -> List[Document]:
        query = self._col(collection)
        for field, op, value in conditions:
            query = query.where(field, op, value)
        return [doc.to_dict() for doc in query.stream()]

    def _batched(self, refs, apply) -> int:
        count = 0
        batch = self._db.batch()
        for ref in refs:
            apply(batch, ref)
            count += 1
            if count % FIRESTORE_BATCH_LIMIT == 0:
                batch.commit()
                batch = self._db.batch()
        batch.commit()
        return count

    async def ping(self) -> bool:
        await run_in_threadpool(lambda: list(self._col("projects").limit(1).stream()))
        return True

    # Users
    async def get_user(self, user_id: str) -> Optional[Document]:
        return await run_in_threadpool(self._get_doc, "users", user_id)

    def _get_or_create_user(self, data: Document) -> Tuple[Document, bool]:
        from google.api_core import exceptions as google_exceptions

        ref = self._col("users").document(data["id"])
        try:
            ref.create(data)
            return data, True
        except google_exceptions.Conflict:
            return ref.get().to_dict(), False

    async def get_or_create_user(self, data: Document) -> Tuple[Document, bool]:
        return await run_in_threadpool(self._get_or_create_user, data)

    async def update_user(self, user_id: str, updates: Document) -> Document:
        return await run_in_threadpool(self._update_doc, "users", user_id, updates)

    # Projects
    async def create_project(self, data: Document) -> Document:
        return await run_in_threadpool(self._set_doc, "projects", data)

    async def get_project(self, project_id: str) -> Optional[Document]:
        return await run_in_threadpool(self._get_doc, "projects", project_id)

    async def update_project(self, project_id: str, updates: Document) -> Document:
        return await run_in_threadpool(self._update_doc, "projects", project_id, updates)

    def _transact_project(self, project_id: str, fn: ProjectMutator) -> Document:
        from google.cloud import firestore

        ref = self._col("projects").document(str(project_id))

        @firestore.transactional
        def run(transaction):
            snap = ref.get(transaction=transaction)
            if not snap.exists:
                raise NotFound("Project not found")
            project = snap.to_dict()
            updates = fn(copy.deepcopy(project)) or {}
            if updates:
                transaction.update(ref, updates)
            project.update(updates)
            return project

        return run(self._db.transaction())

    async def transact_project(self, project_id: str, fn: ProjectMutator) -> Document:
        return await run_in_threadpool(self._transact_project, project_id, fn)

    async def delete_project(self, project_id: str) -> None:
        await run_in_threadpool(self._delete_doc, "projects", project_id)

    def _list_projects_for_user(self, user_id: str) -> List[Document]:
        projects = {p["id"]: p for p in self._query("projects", ("owner_id", "==", user_id))}
        for p in self._query("projects", ("member_ids", "array_contains", user_id)):
            projects.setdefault(p["id"], p)
        return list(projects.values())

    async def list_projects_for_user(self, user_id: str) -> List[Document]:
        return await run_in_threadpool(self._list_projects_for_user, user_id)

    async def count_projects_with_category(self, category_id: str) -> int:
        projects = await run_in_threadpool(
            self._query, "projects", ("category_ids", "array_contains", category_id)
        )
        return len([p for p in projects if not p.get("is_archived")])

    # Tasks
    async def create_task(self, data: Document) -> Document:
        return await run_in_threadpool(self._set_doc, "tasks", data)

    async def get_task(self, task_id: str) -> Optional[Document]:
        return await run_in_threadpool(self._get_doc, "tasks", task_id)

    async def update_task(self, task_id: str, updates: Document) -> Document:
        return await run_in_threadpool(self._update_doc, "tasks", task_id, updates)

    async def delete_task(self, task_id: str) -> None:
        await run_in_threadpool(self._delete_doc, "tasks", task_id)

    async def list_tasks(self, **filters) -> List[Document]:
        conditions = [(field, "==", value) for field, value in filters.items()]
        return await run_in_threadpool(self._query, "tasks", *conditions)

    def _set_project_tasks_archived(self, project_id: str, archived: bool, archived_at: Optional[datetime]) -> int:
        refs = [doc.reference for doc in self._col("tasks").where("project_id", "==", project_id).stream()]
        return self._batched(
            refs, lambda batch, ref: batch.update(ref, {"is_archived": archived, "archived_at": archived_at})
        )

    async def set_project_tasks_archived(self, project_id: str, archived: bool, archived_at: Optional[datetime]) -> int:
        return await run_in_threadpool(self._set_project_tasks_archived, project_id, archived, archived_at)

    def _delete_project_tasks(self, project_id: str) -> List[Document]:
        docs = list(self._col("tasks").where("project_id", "==", project_id).stream())
        self._batched([d.reference for d in docs], lambda batch, ref: batch.delete(ref))
        return [d.to_dict() for d in docs]

    async def delete_project_tasks(self, project_id: str) -> List[Document]:
        return await run_in_threadpool(self._delete_project_tasks, project_id)

    # Categories
    async def create_category(self, data: Document) -> Document:
        return await run_in_threadpool(self._set_doc, "categories", data)

    async def get_category(self, category_id: str) -> Optional[Document]:
        return await run_in_threadpool(self._get_doc, "categories", category_id)

    async def update_category(self, category_id: str, updates: Document) -> Document:
        return await run_in_threadpool(self._update_doc, "categories", category_id, updates)

    async def delete_category(self, category_id: str) -> None:
        await run_in_threadpool(self._delete_doc, "categories", category_id)

    async def list_categories(self, created_by: str) -> List[Document]:
        return await run_in_threadpool(self._query, "categories", ("created_by", "==", created_by))

    def _detach_category(self, category_id: str) -> None:
        from google.cloud import firestore

        task_refs = [d.reference for d in self._col("tasks").where("category_id", "==", category_id).stream()]
        self._batched(task_refs, lambda batch, ref: batch.update(ref, {"category_id": None}))
        project_refs = [
            d.reference
            for d in self._col("projects").where("category_ids", "array_contains", category_id).stream()
        ]
        self._batched(
            project_refs,
            lambda batch, ref: batch.update(ref, {"category_ids": firestore.ArrayRemove([category_id])}),
        )

    async def detach_category(self, category_id: str) -> None:
        await run_in_threadpool(self._detach_category, category_id)

    # Invitations
    def _create_invitation(self, data: Document, now: datetime) -> Document:
        from google.cloud import firestore

        # One slot document per (project, email) serialises concurrent creates
        slot_ref = self._col("invitation_slots").document(_invitation_slot_id(data["project_id"], data["email"]))
        invitation_ref = self._col("invitations").document(data["id"])

        @firestore.transactional
        def run(transaction):
            slot = slot_ref.get(transaction=transaction)
            if slot.exists:
                current_id = (slot.to_dict() or {}).get("invitation_id")
                if current_id:
                    current = self._col("invitations").document(current_id).get(transaction=transaction)
                    if current.exists and is_live_invitation(current.to_dict(), now):
                        raise DuplicateInvitation(email=data["email"])
            transaction.set(invitation_ref, data)
            transaction.set(slot_ref, {
                "invitation_id": data["id"],
                "project_id": data["project_id"],
                "email": data["email"],
                "updated_at": now,
            })
            return data

        return run(self._db.transaction())

    async def create_invitation(self, data: Document, now: datetime) -> Document:
        return await run_in_threadpool(self._create_invitation, data, now)

    async def get_invitation(self, invitation_id: str) -> Optional[Document]:
        return await run_in_threadpool(self._get_doc, "invitations", invitation_id)

    def _get_invitation_by_token(self, token: str) -> Optional[Document]:
        docs = list(self._col("invitations").where("token", "==", token).limit(1).stream())
        return docs[0].to_dict() if docs else None

    async def get_invitation_by_token(self, token: str) -> Optional[Document]:
        return await run_in_threadpool(self._get_invitation_by_token, token)

    async def list_invitations(self, project_id: str) -> List[Document]:
        return await run_in_threadpool(self._query, "invitations", ("project_id", "==", project_id))

    def _transact_invitation(self, invitation_id: str, fn: InvitationMutator) -> Tuple[Document, Optional[Document]]:
        from google.cloud import firestore

        invitation_ref = self._col("invitations").document(str(invitation_id))

        @firestore.transactional
        def run(transaction):
            snap = invitation_ref.get(transaction=transaction)
            if not snap.exists:
                raise NotFound("Invitation not found")
            invitation = snap.to_dict()
            project_ref = self._col("projects").document(invitation["project_id"])
            project_snap = project_ref.get(transaction=transaction)
            project = project_snap.to_dict() if project_snap.exists else None

            invitation_updates, project_updates = fn(copy.deepcopy(invitation), copy.deepcopy(project))
            if invitation_updates:
                transaction.update(invitation_ref, invitation_updates)
                invitation.update(invitation_updates)
            if project_updates and project is not None:
                transaction.update(project_ref, project_updates)
                project.update(project_updates)
            return invitation, project

        return run(self._db.transaction())

    async def transact_invitation(self, invitation_id: str, fn: InvitationMutator) -> Tuple[Document, Optional[Document]]:
        return await run_in_threadpool(self._transact_invitation, invitation_id, fn)


Store = Union[MemoryStore, FirestoreStore]


def create_store() -> Store:
    backend = (settings.STORE_BACKEND or "").strip().lower()
    if backend in {"firestore", "fs"}:
        return FirestoreStore()
    if backend == "memory":
        return MemoryStore()

    if (settings.ENVIRONMENT or "").strip().lower() == "production":
        return FirestoreStore()

    logger.info("Using in-memory document store")
    return MemoryStore()
