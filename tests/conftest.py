import io
import os
import tempfile
import time
from datetime import datetime, timedelta

# Settings and the engine are read at import time, so the environment must be
# in place before anything from the app is imported.
os.environ.setdefault("TEST_SQLITE", "1")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("MODERATION_ENABLED", "false")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOCAL_STORAGE_ROOT", tempfile.mkdtemp(prefix="gallery-tests-"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy.orm import Session as _Session  # noqa: E402

import app.models  # noqa: E402,F401
from app.models.photo import Photo  # noqa: E402
from app.models.user import ROLE_USER, Base, User  # noqa: E402
from app.services.auth import SESSION_COOKIE, create_session  # noqa: E402
from app.services.broadcast import InProcessBroadcaster  # noqa: E402
from app.services.connections import ConnectionRegistry  # noqa: E402
from app.services.moderation import ModerationResult  # noqa: E402
from db import engine  # noqa: E402

BASE_TIME = datetime(2024, 6, 1, 12, 0, 0)


class FakeBlobStore:
    """In-memory blob store with switchable failures."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_get: set[str] = set()
        self.fail_delete: set[str] = set()
        self.get_delay = 0.0

    def put(self, key, data, content_type):
        self.objects[key] = bytes(data)
        return f"https://blobs.test/{key}"

    def get(self, key):
        if self.get_delay:
            time.sleep(self.get_delay)
        if key in self.fail_get or key not in self.objects:
            raise KeyError(key)
        return self.objects[key]

    def delete(self, key):
        if key in self.fail_delete:
            raise RuntimeError(f"delete failed: {key}")
        self.objects.pop(key, None)
        self.deleted.append(key)


class FakeModerator:
    def __init__(self):
        self.verdict = ModerationResult(approved=True)
        self.calls = 0

    def classify(self, image):
        self.calls += 1
        return self.verdict


@pytest.fixture
def db_session():
    """Fresh schema per test; request handlers share this session through db.get_db."""
    import db as dbmod

    Base.metadata.create_all(bind=engine)
    session = _Session(bind=engine)
    dbmod._TEST_SESSION = session
    try:
        yield session
    finally:
        dbmod._TEST_SESSION = None
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def moderator():
    return FakeModerator()


@pytest.fixture
def registry():
    return ConnectionRegistry(max_queue=64)


@pytest.fixture
def client(db_session, blob_store, moderator, registry):
    # Import the app here so the environment above is applied first
    from main import app

    saved = (app.state.blob_store, app.state.moderator, app.state.broadcaster)
    app.state.blob_store = blob_store
    app.state.moderator = moderator
    app.state.broadcaster = InProcessBroadcaster(registry)
    try:
        yield TestClient(app)
    finally:
        app.state.blob_store, app.state.moderator, app.state.broadcaster = saved


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(first_name="Test", role=ROLE_USER, **fields) -> User:
        counter["n"] += 1
        user = User(
            ExternalID=fields.pop("ExternalID", f"ext_{counter['n']}"),
            Email=fields.pop("Email", f"user{counter['n']}@example.test"),
            FirstName=first_name,
            Role=role,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_photo(db_session, blob_store):
    counter = {"n": 0}

    def _make(user, description=None, created=None, data=b"jpeg-bytes", store=True) -> Photo:
        counter["n"] += 1
        key = f"photos/{user.UserID}/p{counter['n']}.jpeg"
        photo = Photo(
            UserID=user.UserID,
            S3Key=key,
            S3Url=f"https://blobs.test/{key}",
            Description=description,
            ModerationApproved=True,
            CreatedAt=created or BASE_TIME + timedelta(seconds=counter["n"]),
        )
        db_session.add(photo)
        db_session.commit()
        if store:
            blob_store.objects[key] = data
        return photo

    return _make


@pytest.fixture
def login(client, db_session):
    def _login(user) -> None:
        sess = create_session(db_session, user_id=user.UserID)
        client.cookies.set(SESSION_COOKIE, str(sess.SessionID))

    return _login


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (200, 40, 40)).save(buf, format="PNG")
    return buf.getvalue()
