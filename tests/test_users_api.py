import os


def _auth(user):
    return {"Authorization": f"Bearer {user}"}


def test_update_display_name(client):
    response = client.put("/api/users/me", json={"display_name": "Bobby"}, headers=_auth("bob"))
    assert response.status_code == 200
    assert response.json()["display_name"] == "Bobby"
    assert client.get("/api/users/me", headers=_auth("bob")).json()["display_name"] == "Bobby"

    response = client.put("/api/users/me", json={"display_name": "B"}, headers=_auth("bob"))
    assert response.status_code == 422
    response = client.put("/api/users/me", json={"display_name": "x" * 51}, headers=_auth("bob"))
    assert response.status_code == 422

    # An empty body leaves the profile alone
    response = client.put("/api/users/me", json={}, headers=_auth("bob"))
    assert response.json()["display_name"] == "Bobby"


def test_avatar_upload_replace_and_delete(client, blob_store):
    response = client.post(
        "/api/users/me/avatar",
        files={"file": ("me.png", b"first", "image/png")},
        headers=_auth("alice"),
    )
    assert response.status_code == 200, response.text
    first = response.json()["avatar"]
    assert first.startswith("avatars/alice/")
    first_path = os.path.join(blob_store.root, first)
    assert os.path.exists(first_path)

    response = client.post(
        "/api/users/me/avatar",
        files={"file": ("me.webp", b"second", "image/webp")},
        headers=_auth("alice"),
    )
    second = response.json()["avatar"]
    assert second != first
    assert not os.path.exists(first_path)

    response = client.delete("/api/users/me/avatar", headers=_auth("alice"))
    assert response.status_code == 200
    assert response.json()["avatar"] is None
    assert not os.path.exists(os.path.join(blob_store.root, second))
    assert client.get("/api/users/me", headers=_auth("alice")).json()["avatar"] is None


def test_avatar_rejects_bad_files(client, monkeypatch):
    from backend.app.core.config import settings

    response = client.post(
        "/api/users/me/avatar",
        files={"file": ("me.pdf", b"%PDF", "application/pdf")},
        headers=_auth("alice"),
    )
    assert response.status_code == 400

    monkeypatch.setattr(settings, "MAX_AVATAR_BYTES", 4)
    response = client.post(
        "/api/users/me/avatar",
        files={"file": ("me.jpg", b"0123456789", "image/jpeg")},
        headers=_auth("alice"),
    )
    assert response.status_code == 413
    assert client.get("/api/users/me", headers=_auth("alice")).json()["avatar"] is None
