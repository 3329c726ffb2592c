import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment: "development" or "production"
    ENVIRONMENT: str = "development"
    DEV_AUTH_BYPASS: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS: Comma-separated list of allowed origins
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:8000"

    # "memory" or "firestore"; empty selects firestore in production
    STORE_BACKEND: str = ""
    FIREBASE_PROJECT_ID: str = ""
    FIREBASE_STORAGE_BUCKET: str = ""

    # Attachments: "local" or "firebase"
    BLOB_BACKEND: str = "local"
    UPLOAD_DIR: str = "/tmp/task24_uploads" if os.getenv("ENVIRONMENT") == "production" else "./uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    MAX_AVATAR_BYTES: int = 5 * 1024 * 1024

    INVITATION_TTL_HOURS: int = 72
    FRONTEND_URL: str = "http://localhost:3000"

    EMAIL_ENABLED: bool = False
    EMAIL_HOST: str = ""
    EMAIL_PORT: int = 587
    EMAIL_USER: str = ""
    EMAIL_PASSWORD: str = ""
    EMAIL_FROM: str = "Task24 <no-reply@task24.local>"
    EMAIL_USE_TLS: bool = True

    # Only project members may subscribe to a project's room
    REALTIME_REQUIRE_MEMBERSHIP: bool = True
    REALTIME_QUEUE_SIZE: int = 256

    class Config:
        # Look for .env in the current directory, or in the backend directory relative to this file
        _env_path = ".env"
        if not os.path.exists(_env_path):
            _base_dir = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
            _env_path = os.path.join(_base_dir, ".env")

        env_file = _env_path
        extra = "ignore"


settings = Settings()
