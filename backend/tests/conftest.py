"""
Pytest configuration and fixtures for the backend tests.
"""
import os
import tempfile

# Settings are read at import time; configure the environment first.
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-secret"
os.environ["REFRESH_TOKEN_SECRET"] = "test-refresh-secret"
os.environ["USE_MONGO"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="mediahub-logs-")
os.environ["UPLOAD_TMP_DIR"] = tempfile.mkdtemp(prefix="mediahub-uploads-")

from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator, List, Optional

import pytest
from bson import ObjectId
from faker import Faker
from httpx import ASGITransport, AsyncClient

from core.errors import UpstreamFailure
from core.security import get_password_hash
from db.store import MemoryStore, SUBSCRIPTIONS, VIDEOS, get_store
from main import app
from schemas.user_schema import UserInDB
from services.media_service import get_object_store
from services.user_service import create_user, find_by_id

# Initialize Faker for test data generation
fake = Faker()

DEFAULT_PASSWORD = "testpassword123"


class FakeObjectStore:
    """Records uploads and deletes the local file the way the real store does."""

    def __init__(self):
        self.uploaded: List[str] = []
        self.fail = False

    async def upload(self, local_path: str) -> dict:
        try:
            if self.fail:
                raise UpstreamFailure("Error while uploading file")
            assert Path(local_path).exists()
            self.uploaded.append(local_path)
            return {"url": f"https://res.cloudinary.test/{Path(local_path).name}"}
        finally:
            Path(local_path).unlink(missing_ok=True)

    async def discard(self, local_path: Optional[str]) -> None:
        if local_path:
            Path(local_path).unlink(missing_ok=True)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
async def client(store: MemoryStore, object_store: FakeObjectStore) -> AsyncGenerator[AsyncClient, None]:
    """ASGI client bound to the in-memory store; https so Secure cookies round-trip."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_object_store] = lambda: object_store
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="https://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(store: MemoryStore):
    async def _make(username: Optional[str] = None, password: str = DEFAULT_PASSWORD, **extra) -> UserInDB:
        username = (username or fake.unique.user_name()).lower()
        fields = {
            "username": username,
            "email": f"{username}@example.com",
            "fullname": fake.name(),
            "hashed_password": get_password_hash(password),
            "avatar": f"https://res.cloudinary.test/{username}.png",
            **extra,
        }
        user_id = await create_user(store, fields)
        return await find_by_id(store, user_id)
    return _make


@pytest.fixture
def make_video(store: MemoryStore):
    async def _make(owner_id, title: Optional[str] = None) -> ObjectId:
        return await store.insert_one(VIDEOS, {
            "owner": ObjectId(str(owner_id)),
            "title": title or fake.sentence(nb_words=4),
            "description": fake.text(max_nb_chars=80),
            "video_file": "https://res.cloudinary.test/video.mp4",
            "thumbnail": "https://res.cloudinary.test/thumb.png",
            "duration": 120.5,
            "views": 0,
            "is_published": True,
            "created_at": datetime.now(timezone.utc),
        })
    return _make


@pytest.fixture
def subscribe(store: MemoryStore):
    async def _subscribe(subscriber_id, channel_id) -> ObjectId:
        return await store.insert_one(SUBSCRIPTIONS, {
            "subscriber": ObjectId(str(subscriber_id)),
            "channel": ObjectId(str(channel_id)),
        })
    return _subscribe


@pytest.fixture
def sample_user_data():
    """Registration form fields."""
    username = fake.unique.user_name()
    return {
        "username": username,
        "email": f"{username}@example.com",
        "fullname": fake.name(),
        "password": DEFAULT_PASSWORD,
    }
