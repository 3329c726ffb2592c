import pytest
from fastapi.testclient import TestClient

from backend.app.core import auth
from backend.app.core.storage import LocalBlobStore
from backend.app.main import create_app
from backend.app.services.broadcaster import RoomBroadcaster
from backend.app.services.store import MemoryStore

# Bearer tokens accepted by the fake verifier, keyed by token
TOKENS = {
    "alice": {"uid": "alice", "email": "alice@example.com", "name": "Alice", "email_verified": True},
    "bob": {"uid": "bob", "email": "Bob@Example.com", "name": "Bob", "email_verified": True},
    "carol": {"uid": "carol", "email": "carol@example.com", "name": "Carol", "email_verified": True},
    "mallory": {"uid": "mallory", "email": "mallory@example.com", "name": "Mallory", "email_verified": True},
    "unverified": {"uid": "unverified", "email": "new@example.com", "email_verified": False},
}


def _fake_verify(token):
    if token not in TOKENS:
        raise ValueError("Unknown token")
    return dict(TOKENS[token])


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def send_project_invitation(self, invitation):
        self.sent.append(invitation)
        return True


@pytest.fixture(autouse=True)
def fake_tokens(monkeypatch):
    monkeypatch.setattr(auth, "_verify_token", _fake_verify)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(str(tmp_path / "uploads"))


@pytest.fixture
def app(store, notifier, blob_store):
    return create_app(store=store, broadcaster=RoomBroadcaster(), notifier=notifier, blob_store=blob_store)


@pytest.fixture
def client(app):
    # One portal for HTTP and WebSocket sessions so they share an event loop
    with TestClient(app) as client:
        yield client
