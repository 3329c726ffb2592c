import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool

from backend.app.api.deps import get_blob_store, get_store
from backend.app.core.auth import get_current_user
from backend.app.core.config import settings
from backend.app.core.storage import avatar_key, delete_quietly
from backend.app.schemas.user import UserProfile, UserUpdate

logger = logging.getLogger("task24.api.users")

router = APIRouter()

AVATAR_MIMETYPES = {"image/png", "image/jpeg", "image/webp"}


@router.get("/me", response_model=UserProfile)
async def get_my_profile(current_user: UserProfile = Depends(get_current_user)):
    """Get the current user's profile."""
    return current_user


@router.put("/me", response_model=UserProfile)
async def update_my_profile(
    request: UserUpdate,
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
):
    updates = request.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        return current_user
    updates["updated_at"] = datetime.now(timezone.utc)
    return await store.update_user(current_user.id, updates)


@router.post("/me/avatar", response_model=UserProfile)
async def upload_avatar(
    file: UploadFile = File(...),
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    blob_store=Depends(get_blob_store),
):
    """Replace the avatar; the previous image is removed from storage."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="File has no name")
    content_type = file.content_type or "application/octet-stream"
    if content_type not in AVATAR_MIMETYPES:
        raise HTTPException(status_code=400, detail="Unsupported image type. Allowed: PNG, JPG, WEBP")

    data = await file.read()
    if len(data) > settings.MAX_AVATAR_BYTES:
        raise HTTPException(status_code=413, detail="Image is too large")

    try:
        path = await run_in_threadpool(blob_store.store, data, avatar_key(current_user.id, file.filename), content_type)
    except Exception as e:
        logger.error("Failed to store avatar for user %s: %s", current_user.id, e)
        raise HTTPException(status_code=500, detail="Failed to store image")

    user = await store.update_user(current_user.id, {
        "avatar": path,
        "updated_at": datetime.now(timezone.utc),
    })
    if current_user.avatar:
        await run_in_threadpool(delete_quietly, blob_store, current_user.avatar)
    return user


@router.delete("/me/avatar", response_model=UserProfile)
async def delete_avatar(
    current_user: UserProfile = Depends(get_current_user),
    store=Depends(get_store),
    blob_store=Depends(get_blob_store),
):
    if not current_user.avatar:
        return current_user
    user = await store.update_user(current_user.id, {
        "avatar": None,
        "updated_at": datetime.now(timezone.utc),
    })
    await run_in_threadpool(delete_quietly, blob_store, current_user.avatar)
    return user
