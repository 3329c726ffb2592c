import asyncio
import gc
from datetime import datetime, timezone

import pytest

from backend.app.core.errors import NotFound
from backend.app.services.store import MemoryStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_update_missing_document_raises():
    store = MemoryStore()

    with pytest.raises(NotFound) as exc:
        asyncio.run(store.update_category("nope", {"name": "x"}))
    assert exc.value.message == "Category not found"

    with pytest.raises(NotFound):
        asyncio.run(store.update_task("nope", {"title": "x"}))


def test_reads_return_copies():
    store = MemoryStore()

    async def scenario():
        await store.create_task({"id": "t1", "title": "a", "tags": ["x"]})
        task = await store.get_task("t1")
        task["tags"].append("y")
        assert (await store.get_task("t1"))["tags"] == ["x"]

    asyncio.run(scenario())


def test_list_tasks_filters_by_equality():
    store = MemoryStore()

    async def scenario():
        await store.create_task({"id": "t1", "project_id": "p1", "is_archived": False})
        await store.create_task({"id": "t2", "project_id": "p1", "is_archived": True})
        await store.create_task({"id": "t3", "project_id": "p2", "is_archived": False})

        live = await store.list_tasks(project_id="p1", is_archived=False)
        assert [t["id"] for t in live] == ["t1"]

        assert await store.set_project_tasks_archived("p1", True, NOW) == 2
        archived = await store.list_tasks(project_id="p1", is_archived=True)
        assert {t["archived_at"] for t in archived} == {NOW}

        removed = await store.delete_project_tasks("p1")
        assert {t["id"] for t in removed} == {"t1", "t2"}
        assert [t["id"] for t in await store.list_tasks()] == ["t3"]

    asyncio.run(scenario())


def test_detach_category_clears_references():
    store = MemoryStore()

    async def scenario():
        await store.create_task({"id": "t1", "category_id": "c1"})
        await store.create_task({"id": "t2", "category_id": "c2"})
        await store.create_project({"id": "p1", "owner_id": "u1", "category_ids": ["c1", "c2"]})

        assert await store.count_projects_with_category("c1") == 1
        await store.detach_category("c1")

        assert (await store.get_task("t1"))["category_id"] is None
        assert (await store.get_task("t2"))["category_id"] == "c2"
        assert (await store.get_project("p1"))["category_ids"] == ["c2"]
        assert await store.count_projects_with_category("c1") == 0

    asyncio.run(scenario())


def test_failed_transaction_leaves_project_untouched():
    store = MemoryStore()

    def mutate(project):
        raise NotFound("Member not found")

    async def scenario():
        await store.create_project({"id": "p1", "owner_id": "u1", "members": []})
        with pytest.raises(NotFound):
            await store.transact_project("p1", mutate)
        assert (await store.get_project("p1"))["members"] == []

        projects = await store.list_projects_for_user("u1")
        assert [p["id"] for p in projects] == ["p1"]
        assert await store.list_projects_for_user("u2") == []

    asyncio.run(scenario())


def test_entity_locks_are_released_after_use():
    store = MemoryStore()

    async def scenario():
        await store.create_project({"id": "p1", "owner_id": "u1", "members": [], "counter": 0})

        def bump(project):
            return {"counter": project["counter"] + 1}

        await asyncio.gather(*(store.transact_project("p1", bump) for _ in range(20)))
        await store.get_or_create_user({"id": "u1", "email": "u1@example.com"})
        assert (await store.get_project("p1"))["counter"] == 20

    asyncio.run(scenario())
    gc.collect()
    assert len(store._locks) == 0
