"""Identity provider integration: user webhooks, session exchange, logout."""

import hmac
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.errors import InvalidInput, Unauthenticated
from app.core.settings import settings
from app.models.user import User
from app.services.auth import (
    SESSION_COOKIE,
    create_session,
    deactivate_session,
    get_user_id_from_request,
    upsert_user,
    verify_identity_token,
)
from db import get_db

router = APIRouter()
audit = logging.getLogger("audit")


class IdentityEvent(BaseModel):
    type: str
    data: dict[str, Any]


class SessionRequest(BaseModel):
    token: str


def _primary_email(data: dict) -> Optional[str]:
    if data.get("email"):
        return str(data["email"])
    for entry in data.get("email_addresses") or []:
        if isinstance(entry, dict) and entry.get("email_address"):
            return str(entry["email_address"])
    return None


def _user_fields(data: dict) -> dict:
    meta = data.get("public_metadata") or {}
    role = data.get("role") or meta.get("role")
    return {
        "Email": _primary_email(data),
        "Username": data.get("username"),
        "FirstName": data.get("first_name"),
        "LastName": data.get("last_name"),
        "AvatarUrl": data.get("image_url"),
        "Role": str(role).upper() if role else None,
    }


@router.post("/api/webhooks/identity", response_class=JSONResponse)
async def identity_webhook(
    event: IdentityEvent,
    x_webhook_secret: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    expected = settings.IDENTITY_WEBHOOK_SECRET
    if not expected or not x_webhook_secret or not hmac.compare_digest(
        x_webhook_secret, expected
    ):
        raise Unauthenticated("Invalid webhook signature")

    external_id = str(event.data.get("id") or "")
    if not external_id:
        raise InvalidInput("Missing user id")

    if event.type in ("user.created", "user.updated"):
        user = upsert_user(db, external_id, **_user_fields(event.data))
        audit.info(
            "identity.user_synced",
            extra={"event": event.type, "user_id": user.UserID, "external_id": external_id},
        )
        return JSONResponse({"ok": True, "userId": user.UserID})

    # Account removal is handled by the account lifecycle process, not here
    audit.info("identity.event_ignored", extra={"event": event.type, "external_id": external_id})
    return JSONResponse({"ok": True, "ignored": True})


@router.post("/api/auth/session", response_class=JSONResponse)
async def open_session(request: Request, body: SessionRequest, db: Session = Depends(get_db)):
    external_id = verify_identity_token(body.token)
    if not external_id:
        raise Unauthenticated("Invalid or expired identity token")
    # First sign-in may arrive before the webhook; create the user idempotently
    user = db.query(User).filter(User.ExternalID == external_id).first()
    if user is None:
        user = upsert_user(db, external_id)
    session = create_session(
        db,
        user_id=user.UserID,
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", ""),
    )
    audit.info(
        "auth.session_opened",
        extra={
            "user_id": user.UserID,
            "request_id": getattr(request.state, "request_id", None),
        },
    )
    resp = JSONResponse({"ok": True, "userId": user.UserID, "role": user.Role})
    resp.set_cookie(
        key=SESSION_COOKIE,
        value=str(session.SessionID),
        httponly=True,
        samesite="lax",
        secure=bool(settings.COOKIE_SECURE),
        max_age=settings.SESSION_TTL_MINUTES * 60,
    )
    return resp


@router.post("/api/auth/logout", response_class=JSONResponse)
async def logout(request: Request, db: Session = Depends(get_db)):
    user_id = get_user_id_from_request(request, db)
    sid = request.cookies.get(SESSION_COOKIE)
    if sid:
        deactivate_session(db, sid)
    audit.info(
        "auth.logout",
        extra={
            "user_id": user_id,
            "client": request.client.host if request.client else None,
            "request_id": getattr(request.state, "request_id", None),
        },
    )
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(key=SESSION_COOKIE, path="/")
    return resp
