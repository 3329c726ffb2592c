import logging
import os
import uuid

from backend.app.core.config import settings

logger = logging.getLogger("task24.storage")


def _blob_key(prefix: str, owner_id: str, original_filename: str) -> str:
    file_extension = original_filename.rsplit('.', 1)[-1].lower() if '.' in original_filename else 'bin'
    return f"{prefix}/{owner_id}/{uuid.uuid4()}.{file_extension}"


def attachment_key(owner_id: str, original_filename: str) -> str:
    """Build a unique storage key for an attachment of task ``owner_id``."""
    return _blob_key("attachments", owner_id, original_filename)


def avatar_key(user_id: str, original_filename: str) -> str:
    return _blob_key("avatars", user_id, original_filename)


class LocalBlobStore:
    """Stores attachments under UPLOAD_DIR on the local disk."""

    def __init__(self, root: str = None):
        self.root = os.path.abspath(root or settings.UPLOAD_DIR)

    def store(self, data: bytes, key: str, content_type: str = "application/octet-stream") -> str:
        path = os.path.join(self.root, key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return key

    def delete(self, path: str) -> None:
        full_path = os.path.join(self.root, path)
        if os.path.exists(full_path):
            os.remove(full_path)


class FirebaseBlobStore:
    """
    Stores attachments in Firebase Storage.

    Firebase Storage requires a bucket name; it is taken from config or derived
    from the Firebase project (<project-id>.appspot.com).
    """

    def get_storage_bucket(self):
        from firebase_admin import storage
        from backend.app.core.firebase import initialize_firebase_app

        initialize_firebase_app()
        bucket_name = settings.FIREBASE_STORAGE_BUCKET or f"{settings.FIREBASE_PROJECT_ID}.appspot.com"
        return storage.bucket(bucket_name)

    def store(self, data: bytes, key: str, content_type: str = "application/octet-stream") -> str:
        blob = self.get_storage_bucket().blob(key)
        blob.upload_from_string(data, content_type=content_type)
        return key

    def delete(self, path: str) -> None:
        self.get_storage_bucket().blob(path).delete()


def create_blob_store():
    backend = (settings.BLOB_BACKEND or "local").strip().lower()
    if backend == "firebase":
        return FirebaseBlobStore()
    return LocalBlobStore()


def delete_quietly(blob_store, path: str) -> None:
    """Best-effort removal used when the owning record is already gone."""
    try:
        blob_store.delete(path)
    except Exception as e:
        logger.warning("Failed to delete attachment %s: %s", path, e)
