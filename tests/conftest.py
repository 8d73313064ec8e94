"""
Shared fixtures: an in-memory MongoDB, a media store under tmp_path and a
TestClient with both wired in through dependency overrides.
"""
import os
import tempfile

# Settings are read once and cached, so the environment must be ready first
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="videotube-media-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import USERS, VIDEOS, create_document, ensure_indexes, get_db
from dependencies import get_media_store
from main import app
from media import LocalMediaStore
from security import create_access_token, hash_password

PASSWORD = "secret-password"


@pytest.fixture
def db():
    database = mongomock.MongoClient()["videotube_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def media_store(tmp_path):
    return LocalMediaStore(str(tmp_path / "media"), "/static")


@pytest.fixture
def client(db, media_store):
    """
    TestClient with the database and media store dependencies overridden.
    Not used as a context manager so the startup hook never dials MongoDB.
    """
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_media_store] = lambda: media_store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(username, password=PASSWORD, **extra):
        doc = {
            "username": username,
            "email": f"{username}@videotube.dev",
            "fullName": username.title(),
            "passwordHash": hash_password(password),
            "avatar": {"url": f"/static/images/{username}.png", "publicId": f"images/{username}.png"},
            "coverImage": None,
            "watchHistory": [],
        }
        doc.update(extra)
        return create_document(db, USERS, doc)
    return _make


@pytest.fixture
def make_video(db):
    def _make(owner, title="Test video", **extra):
        doc = {
            "owner": owner["_id"],
            "title": title,
            "description": f"About {title}",
            "videoFile": {"url": "/static/videos/clip.mp4", "publicId": "videos/clip.mp4"},
            "thumbnail": {"url": "/static/images/thumb.png", "publicId": "images/thumb.png"},
            "duration": 12.5,
            "views": 0,
            "isPublished": True,
        }
        doc.update(extra)
        return create_document(db, VIDEOS, doc)
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user)}"}
    return _headers


@pytest.fixture
def upload_file(tmp_path):
    """Write a small file and return its path, for service-level uploads."""
    def _write(name="image.png", content=b"\x89PNG\r\n\x1a\n fake image"):
        path = tmp_path / name
        path.write_bytes(content)
        return str(path)
    return _write
