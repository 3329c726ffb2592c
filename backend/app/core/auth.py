import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Header, Query, Request, WebSocket, WebSocketException, status
from fastapi.concurrency import run_in_threadpool

from backend.app.core.config import settings
from backend.app.core.errors import DomainError, Forbidden, Unauthenticated
from backend.app.schemas.user import UserProfile

logger = logging.getLogger("task24.auth")

DEV_USER_ID = "dev-user-1"


def _dev_user() -> UserProfile:
    return UserProfile(
        id=DEV_USER_ID,
        email="dev@task24.local",
        display_name="Dev User",
        created_at=datetime.now(timezone.utc),
    )


def _verify_token(token: str) -> dict:
    from firebase_admin import auth
    from backend.app.core.firebase import initialize_firebase_app

    initialize_firebase_app()
    return auth.verify_id_token(token)


async def authenticate_token(token: Optional[str], store) -> UserProfile:
    """
    Verify a Firebase Auth ID token and return the caller's profile.
    For development, if no token is provided and DEV_AUTH_BYPASS is set,
    returns a fixed dev user. In production, this raises an error.
    """
    if not token:
        # Only allow local dev fallback if explicitly enabled
        if settings.ENVIRONMENT == "development" and settings.DEV_AUTH_BYPASS:
            return _dev_user()
        raise Unauthenticated("Authentication required")

    try:
        decoded_token = await run_in_threadpool(_verify_token, token)
    except Exception as e:
        logger.info("Rejected authentication token: %s", e)
        raise Unauthenticated("Invalid authentication token")

    if not decoded_token.get("email_verified", False):
        raise Forbidden("Email is not verified. Please verify your email first")

    uid = decoded_token["uid"]
    # Get or create user profile in the store
    user_data, created = await store.get_or_create_user({
        "id": uid,
        "email": (decoded_token.get("email") or "").lower(),
        "display_name": decoded_token.get("name"),
        "email_verified": True,
        "created_at": datetime.now(timezone.utc),
    })
    if created:
        logger.info("Created profile for user %s", uid)
    return UserProfile(**user_data)


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.split("Bearer ", 1)[1].strip() or None


async def get_current_user(request: Request, authorization: Optional[str] = Header(None)) -> UserProfile:
    return await authenticate_token(_bearer(authorization), request.app.state.store)


async def get_socket_user(websocket: WebSocket, token: Optional[str] = Query(None)) -> UserProfile:
    """Browsers cannot set headers on WebSocket upgrades, so the token travels as a query parameter."""
    try:
        return await authenticate_token(token, websocket.app.state.store)
    except DomainError as e:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
