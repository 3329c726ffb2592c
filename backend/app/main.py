from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from backend.app.api import categories, health, invitations, projects, realtime, tasks, users
from backend.app.core.config import settings
from backend.app.core.errors import DomainError
from backend.app.core.storage import create_blob_store
from backend.app.services.broadcaster import RoomBroadcaster
from backend.app.services.notifications import EmailNotifier
from backend.app.services.store import create_store

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("task24")


def create_app(store=None, broadcaster=None, notifier=None, blob_store=None) -> FastAPI:
    app = FastAPI(title="Task24", description="Projects, Kanban tasks and live collaboration")

    app.state.store = store if store is not None else create_store()
    app.state.broadcaster = broadcaster if broadcaster is not None else RoomBroadcaster()
    app.state.notifier = notifier if notifier is not None else EmailNotifier()
    app.state.blob_store = blob_store if blob_store is not None else create_blob_store()

    # CORS - uses configured origins (restricted in production)
    allowed_origins = settings.ALLOWED_ORIGINS.split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        if exc.http_status >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_dict()})

    # Include routers with /api prefix
    app.include_router(projects.router, prefix="/api/projects", tags=["projects"])
    app.include_router(invitations.router, prefix="/api/invitations", tags=["invitations"])
    app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])
    app.include_router(categories.router, prefix="/api/categories", tags=["categories"])
    app.include_router(users.router, prefix="/api/users", tags=["users"])
    app.include_router(health.router, prefix="/api/health", tags=["health"])
    app.include_router(realtime.router, tags=["realtime"])

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
