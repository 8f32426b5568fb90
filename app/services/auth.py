# ruff: noqa: I001
"""Principal resolution.

Sign-in itself happens at the external identity provider. It hands the
browser a short-lived signed token carrying the user's external id, which is
exchanged here for a ``session_id`` cookie. Users are mirrored locally from the
provider's webhook events.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

from fastapi import Depends
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.core.errors import Unauthenticated
from app.core.settings import settings
from app.models.user import ROLE_ADMIN, ROLE_USER, User, UserSession
from db import get_db

SESSION_COOKIE = "session_id"
IDENTITY_SALT = "identity-token"

serializer = URLSafeTimedSerializer(settings.SECRET_KEY)


def _utcnow() -> datetime:
    # Aware UTC to avoid deprecation, stored naive to match the DB columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Identity tokens


def issue_identity_token(external_id: str) -> str:
    """What the identity provider hands the browser after sign-in."""
    return str(serializer.dumps(external_id, salt=IDENTITY_SALT))


def verify_identity_token(token: str, max_age: Optional[int] = None) -> Optional[str]:
    age = max_age if max_age is not None else settings.IDENTITY_TOKEN_MAX_AGE_SECONDS
    try:
        return str(serializer.loads(token, salt=IDENTITY_SALT, max_age=age))
    except BadSignature:
        return None


# Users mirrored from the identity provider


def upsert_user(db: Session, external_id: str, **fields) -> User:
    """Create or update the local user for ``external_id``; safe to replay."""
    user = db.query(User).filter(User.ExternalID == external_id).first()
    if user is None:
        user = User(ExternalID=external_id, Role=ROLE_USER)
        db.add(user)
    for name in ("Email", "Username", "FirstName", "LastName", "AvatarUrl"):
        if name in fields and fields[name] is not None:
            setattr(user, name, fields[name])
    role = fields.get("Role")
    if role in (ROLE_USER, ROLE_ADMIN):
        user.Role = role
    db.commit()
    db.refresh(user)
    return user


# Session management


def create_session(
    db: Session,
    user_id: str,
    expires_in_minutes: Optional[int] = None,
    ip_address: str = "",
    user_agent: str = "",
) -> UserSession:
    now = _utcnow()
    ttl = expires_in_minutes if expires_in_minutes is not None else settings.SESSION_TTL_MINUTES
    session = UserSession(
        SessionID=uuid.uuid4(),
        UserID=user_id,
        CreatedAt=now,
        ExpiresAt=now + timedelta(minutes=ttl),
        IsActive=True,
        LastSeen=now,
        IPAddress=ip_address or None,
        UserAgent=(user_agent or "")[:255] or None,
    )
    db.add(session)
    db.commit()
    return session


def _parse_sid(session_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(session_id))
    except ValueError:
        return None


def get_session(db: Session, session_id: str) -> Optional[UserSession]:
    sid = _parse_sid(session_id)
    if sid is None:
        return None
    session = (
        db.query(UserSession)
        .filter(UserSession.SessionID == sid, UserSession.IsActive)
        .first()
    )
    if session is None:
        return None
    expires_at = session.ExpiresAt
    if isinstance(expires_at, datetime) and expires_at <= _utcnow():
        return None
    session.LastSeen = _utcnow()
    db.commit()
    return session


def deactivate_session(db: Session, session_id: str) -> None:
    sid = _parse_sid(session_id)
    if sid is None:
        return
    session = db.query(UserSession).filter(UserSession.SessionID == sid).first()
    if session:
        session.IsActive = False
        db.commit()


def get_user_id_from_request(request: Request, db: Session) -> Optional[str]:
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        return None
    session_obj = get_session(db=db, session_id=session_id)
    return session_obj.UserID if session_obj else None


# FastAPI dependencies for auth


def get_current_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """Return the signed-in User, or None without a valid session cookie."""
    uid = get_user_id_from_request(request, db)
    if uid is None:
        return None
    return db.query(User).filter(User.UserID == uid).first()


def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    user = get_current_user(request, db)
    if not user:
        raise Unauthenticated()
    request.state.user_id = user.UserID
    return user
