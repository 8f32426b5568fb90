import pytest

from app.core.settings import settings
from app.models.user import ROLE_ADMIN, User, UserSession
from app.services.auth import (
    SESSION_COOKIE,
    issue_identity_token,
    upsert_user,
    verify_identity_token,
)

SECRET = "whsec_test"


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "IDENTITY_WEBHOOK_SECRET", SECRET)
    return SECRET


def _user_event(kind="user.created", **data):
    payload = {
        "id": "user_2abc",
        "email_addresses": [{"email_address": "guest@example.test"}],
        "username": "guest",
        "first_name": "Guest",
        "last_name": "One",
        "image_url": "https://img.test/guest.png",
    }
    payload.update(data)
    return {"type": kind, "data": payload}


def test_webhook_creates_then_updates_user(client, db_session, webhook_secret):
    headers = {"X-Webhook-Secret": webhook_secret}
    r = client.post("/api/webhooks/identity", json=_user_event(), headers=headers)
    assert r.status_code == 200
    user_id = r.json()["userId"]

    # Replays are idempotent
    again = client.post("/api/webhooks/identity", json=_user_event(), headers=headers)
    assert again.json()["userId"] == user_id

    client.post(
        "/api/webhooks/identity",
        json=_user_event("user.updated", first_name="Renamed", public_metadata={"role": "admin"}),
        headers=headers,
    )
    db_session.expire_all()
    users = db_session.query(User).all()
    assert len(users) == 1
    assert users[0].Email == "guest@example.test"
    assert users[0].FirstName == "Renamed"
    assert users[0].Role == ROLE_ADMIN


def test_webhook_rejects_bad_secret(client, webhook_secret):
    r = client.post(
        "/api/webhooks/identity", json=_user_event(), headers={"X-Webhook-Secret": "wrong"}
    )
    assert r.status_code == 401
    assert client.post("/api/webhooks/identity", json=_user_event()).status_code == 401


def test_webhook_ignores_other_events(client, db_session, webhook_secret):
    r = client.post(
        "/api/webhooks/identity",
        json={"type": "user.deleted", "data": {"id": "user_2abc"}},
        headers={"X-Webhook-Secret": webhook_secret},
    )
    assert r.status_code == 200
    assert r.json()["ignored"] is True
    assert db_session.query(User).count() == 0


def test_session_exchange_and_logout(client, db_session):
    token = issue_identity_token("user_fresh")
    r = client.post("/api/auth/session", json={"token": token})
    assert r.status_code == 200
    assert SESSION_COOKIE in r.cookies
    client.cookies.set(SESSION_COOKIE, r.cookies[SESSION_COOKIE])

    role = client.get("/api/user/role")
    assert role.status_code == 200
    assert role.json() == {"userId": r.json()["userId"], "role": "USER"}

    out = client.post("/api/auth/logout")
    assert out.status_code == 200
    db_session.expire_all()
    assert db_session.query(UserSession).filter(UserSession.IsActive).count() == 0
    client.cookies.set(SESSION_COOKIE, r.cookies[SESSION_COOKIE])
    assert client.get("/api/user/role").status_code == 401


def test_session_rejects_tampered_token(client):
    r = client.post("/api/auth/session", json={"token": "garbage.token.value"})
    assert r.status_code == 401


def test_identity_token_expiry():
    token = issue_identity_token("user_x")
    assert verify_identity_token(token) == "user_x"
    assert verify_identity_token(token, max_age=-1) is None


def test_upsert_keeps_existing_fields(db_session):
    first = upsert_user(db_session, "ext_1", Email="a@example.test", FirstName="A")
    second = upsert_user(db_session, "ext_1", FirstName=None, LastName="B", Role="bogus")
    assert first.UserID == second.UserID
    assert second.FirstName == "A"
    assert second.LastName == "B"
    assert second.Role == "USER"


def test_user_photos_lists_only_mine(client, login, make_user, make_photo):
    me = make_user()
    other = make_user()
    mine = [make_photo(me) for _ in range(2)]
    make_photo(other)
    login(me)

    r = client.get("/api/user/photos")
    assert r.status_code == 200
    assert [p["id"] for p in r.json()["photos"]] == [mine[1].PhotoID, mine[0].PhotoID]


def test_stale_cookie_is_unauthenticated(client):
    client.cookies.set(SESSION_COOKIE, "not-a-uuid")
    r = client.get("/api/user/photo-count")
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}
