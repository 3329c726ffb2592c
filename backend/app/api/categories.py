from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from datetime import datetime, timezone
import uuid

from backend.app.api.deps import get_store
from backend.app.core.auth import get_current_user
from backend.app.core.errors import Conflict, NotFound
from backend.app.schemas.category import CategoryCreate, CategoryResponse, CategoryStats, CategoryUpdate
from backend.app.schemas.user import UserProfile

router = APIRouter()


async def _get_own_category(store, category_id: str, user_id: str) -> dict:
    category = await store.get_category(category_id)
    if category is None or category.get("created_by") != user_id:
        raise NotFound("Category not found")
    return category


async def _ensure_unique_name(store, name: str, user_id: str, exclude_id: Optional[str] = None):
    for category in await store.list_categories(user_id):
        if category["name"].lower() == name.lower() and category["id"] != exclude_id:
            raise Conflict("A category with this name already exists", name=name)


async def _with_usage(store, category: dict) -> dict:
    data = dict(category)
    data["usage_in_tasks"] = len(await store.list_tasks(category_id=category["id"], is_archived=False))
    data["usage_in_projects"] = await store.count_projects_with_category(category["id"])
    return data


@router.get("/", response_model=List[CategoryResponse])
async def list_categories(
    search: Optional[str] = None,
    sort_by: str = Query("name", pattern="^(name|usage)$"),
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    categories = await store.list_categories(current_user.id)
    if search:
        categories = [c for c in categories if search.lower() in c["name"].lower()]

    result = [await _with_usage(store, c) for c in categories]
    if sort_by == "usage":
        result.sort(key=lambda c: c["usage_in_tasks"] + c["usage_in_projects"], reverse=True)
    else:
        result.sort(key=lambda c: c["name"].lower())
    return result


@router.get("/stats", response_model=CategoryStats)
async def category_stats(
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    """Number of categories and how many live tasks use them."""
    categories = await store.list_categories(current_user.id)
    usage = 0
    for category in categories:
        usage += len(await store.list_tasks(category_id=category["id"], is_archived=False))
    return {"total_categories": len(categories), "total_usage_in_tasks": usage}


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(
    category_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    category = await _get_own_category(store, category_id, current_user.id)
    return await _with_usage(store, category)


@router.post("/", response_model=CategoryResponse, status_code=201)
async def create_category(
    request: CategoryCreate,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    await _ensure_unique_name(store, request.name, current_user.id)
    now = datetime.now(timezone.utc)
    category = await store.create_category({
        "id": str(uuid.uuid4()),
        "name": request.name,
        "color": request.color,
        "description": request.description,
        "created_by": current_user.id,
        "created_at": now,
        "updated_at": now,
    })
    return category


@router.put("/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: str,
    request: CategoryUpdate,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    await _get_own_category(store, category_id, current_user.id)
    updates = request.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in updates:
        await _ensure_unique_name(store, updates["name"], current_user.id, exclude_id=category_id)

    updates["updated_at"] = datetime.now(timezone.utc)
    category = await store.update_category(category_id, updates)
    return await _with_usage(store, category)


@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    """Delete a category. Tasks and projects using it lose the reference."""
    await _get_own_category(store, category_id, current_user.id)
    await store.detach_category(category_id)
    await store.delete_category(category_id)
    return {"message": "Category deleted"}
