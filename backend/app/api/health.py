from fastapi import APIRouter, Depends
import time

from backend.app.api.deps import get_broadcaster, get_store
from backend.app.core.config import settings
from backend.app.services.broadcaster import RoomBroadcaster

router = APIRouter()


@router.get("/")
async def health_check(store=Depends(get_store), broadcaster: RoomBroadcaster = Depends(get_broadcaster)):
    status = {
        "status": "ok",
        "timestamp": int(time.time()),
        "store": {"backend": type(store).__name__, "ok": False},
        "realtime": {"connections": broadcaster.connection_count()},
        "email_enabled": settings.EMAIL_ENABLED,
        "dev_auth_bypass": bool(settings.DEV_AUTH_BYPASS and settings.ENVIRONMENT == "development"),
    }

    try:
        status["store"]["ok"] = await store.ping()
    except Exception as e:
        status["store"]["error"] = str(e)
        status["status"] = "degraded"

    return status
