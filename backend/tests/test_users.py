"""
API tests for profile, channel and watch-history endpoints.
"""
import pytest
from bson import ObjectId

from core.config import settings
from core.errors import InternalFault
from db.store import USERS

from conftest import DEFAULT_PASSWORD

pytestmark = [pytest.mark.api]

BASE = f"{settings.API_V1_STR}/users"
IMAGE = ("image.png", b"\x89PNG fake image", "image/png")


async def _auth_headers(client, username):
    response = await client.post(f"{BASE}/login", json={"username": username, "password": DEFAULT_PASSWORD})
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['data']['access_token']}"}


class TestCurrentUser:
    async def test_returns_sanitized_record(self, client, make_user):
        await make_user("alice")
        headers = await _auth_headers(client, "alice")
        response = await client.get(f"{BASE}/current-user", headers=headers)
        assert response.status_code == 200
        user = response.json()["data"]
        assert user["username"] == "alice"
        assert "hashed_password" not in user and "refresh_token" not in user

    async def test_rejects_invalid_token(self, client):
        response = await client.get(f"{BASE}/current-user", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401
        assert response.json()["kind"] == "InvalidToken"

    async def test_requires_token(self, client):
        response = await client.get(f"{BASE}/current-user")
        assert response.status_code == 401
        assert response.json()["kind"] == "MissingToken"


class TestUpdateAccount:
    async def test_updates_fullname_and_email(self, client, make_user):
        await make_user("alice")
        headers = await _auth_headers(client, "alice")
        response = await client.patch(
            f"{BASE}/update-account",
            json={"fullname": "Alice Liddell", "email": "Alice.New@Example.com"},
            headers=headers,
        )
        assert response.status_code == 200
        user = response.json()["data"]
        assert user["fullname"] == "Alice Liddell"
        assert user["email"] == "alice.new@example.com"

    async def test_requires_both_fields(self, client, make_user):
        await make_user("alice")
        headers = await _auth_headers(client, "alice")
        response = await client.patch(f"{BASE}/update-account", json={"fullname": "Only Name"}, headers=headers)
        assert response.status_code == 400

    async def test_malformed_email_is_validation_failure(self, client, make_user):
        await make_user("alice")
        headers = await _auth_headers(client, "alice")
        response = await client.patch(
            f"{BASE}/update-account",
            json={"fullname": "Alice", "email": "not-an-email"},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json()["kind"] == "ValidationFailure"
        assert response.json()["detail"].startswith("email")

    async def test_taken_email_is_conflict(self, client, make_user):
        await make_user("alice")
        bob = await make_user("bob")
        headers = await _auth_headers(client, "alice")
        response = await client.patch(
            f"{BASE}/update-account",
            json={"fullname": "Alice", "email": bob.email},
            headers=headers,
        )
        assert response.status_code == 409


class TestImages:
    async def test_update_avatar(self, client, object_store, make_user):
        await make_user("alice")
        headers = await _auth_headers(client, "alice")
        response = await client.patch(f"{BASE}/avatar", files={"avatar": IMAGE}, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["avatar"] == f"https://res.cloudinary.test/{object_store.uploaded[0].split('/')[-1]}"

    async def test_update_cover_image(self, client, object_store, make_user):
        await make_user("alice")
        headers = await _auth_headers(client, "alice")
        response = await client.patch(f"{BASE}/cover-image", files={"cover_image": IMAGE}, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["cover_image"].startswith("https://res.cloudinary.test/")

    async def test_avatar_file_required(self, client, make_user):
        await make_user("alice")
        headers = await _auth_headers(client, "alice")
        response = await client.patch(f"{BASE}/avatar", headers=headers)
        assert response.status_code == 400


class TestChannelProfile:
    async def test_anonymous_and_subscribed_viewer(self, client, make_user, subscribe):
        alice = await make_user("alice")
        fans = [await make_user() for _ in range(3)]
        for fan in fans:
            await subscribe(fan.id, alice.id)

        anonymous = await client.get(f"{BASE}/c/alice")
        assert anonymous.status_code == 200
        assert anonymous.json()["data"]["subscribers_count"] == 3
        assert anonymous.json()["data"]["is_subscribed"] is False

        headers = await _auth_headers(client, fans[0].username)
        viewer = await client.get(f"{BASE}/c/Alice", headers=headers)
        data = viewer.json()["data"]
        assert data["subscribers_count"] == 3
        assert data["is_subscribed"] is True
        assert "hashed_password" not in data and "refresh_token" not in data

    async def test_unknown_channel(self, client):
        response = await client.get(f"{BASE}/c/ghost")
        assert response.status_code == 404
        assert response.json()["kind"] == "NotFound"


class TestWatchHistory:
    async def test_history_in_stored_order(self, client, store, make_user, make_video):
        creator = await make_user("creator")
        viewer = await make_user("viewer")
        v1 = await make_video(creator.id)
        v3 = await make_video(creator.id)
        await store.update_by_id(USERS, ObjectId(viewer.id), {"watch_history": [v3, v1]})

        headers = await _auth_headers(client, "viewer")
        response = await client.get(f"{BASE}/history", headers=headers)
        assert response.status_code == 200
        history = response.json()["data"]
        assert [v["id"] for v in history] == [str(v3), str(v1)]
        assert history[0]["owner"] == {"fullname": creator.fullname, "username": "creator", "avatar": creator.avatar}

    async def test_empty_history(self, client, make_user):
        await make_user("viewer")
        headers = await _auth_headers(client, "viewer")
        response = await client.get(f"{BASE}/history", headers=headers)
        assert response.json()["data"] == []


class TestErrors:
    async def test_unhandled_errors_do_not_leak(self, client, make_user, monkeypatch):
        from services import channel_service

        async def explode(*args, **kwargs):
            raise RuntimeError("connection string mongodb://secret@host")

        monkeypatch.setattr(channel_service, "get_channel_profile", explode)
        response = await client.get(f"{BASE}/c/alice")
        assert response.status_code == 500
        assert response.json() == InternalFault().to_dict()
        assert response.json() == {"detail": "Internal server error", "kind": "InternalFault", "success": False}
