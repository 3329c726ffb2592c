import json
import logging
import os

import firebase_admin
from firebase_admin import credentials, firestore

from backend.app.core.errors import Unavailable

logger = logging.getLogger("task24.firebase")

_client = None


def initialize_firebase_app():
    """
    Initialize the Firebase Admin SDK once per process.

    Credential resolution order:
    1) FIREBASE_CREDENTIALS env var (JSON string)
    2) local service-account.json files (for local development)
    3) application default credentials (works on GCP environments)
    """
    if firebase_admin._apps:
        return firebase_admin.get_app()

    creds_json = os.getenv("FIREBASE_CREDENTIALS", "").strip()
    if creds_json:
        try:
            cred = credentials.Certificate(json.loads(creds_json))
            return firebase_admin.initialize_app(cred)
        except Exception as e:
            logger.error("Failed to initialize Firebase from FIREBASE_CREDENTIALS env: %s", e)
            return firebase_admin.initialize_app()

    possible_paths = [
        "service-account.json",
        "backend/service-account.json",
        os.path.join(os.path.dirname(__file__), "..", "..", "service-account.json"),
    ]
    creds_path = next((p for p in possible_paths if os.path.exists(p)), None)
    if creds_path:
        try:
            app = firebase_admin.initialize_app(credentials.Certificate(creds_path))
            logger.info("Firebase initialized from: %s", creds_path)
            return app
        except Exception as e:
            logger.error("Failed to initialize Firebase from file '%s': %s", creds_path, e)
            return firebase_admin.initialize_app()

    logger.warning("No Firebase credentials found. Using default credentials (may fail locally).")
    return firebase_admin.initialize_app()


def get_firestore_client():
    """Return the process-wide Firestore client, creating it on first use."""
    global _client
    if _client is None:
        try:
            initialize_firebase_app()
            _client = firestore.client()
        except Exception as e:
            logger.critical("Failed to initialize Firestore client: %s", e)
            raise Unavailable("Document store is not available") from e
    return _client
