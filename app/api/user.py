"""Endpoints about the signed-in user."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.user import User
from app.services.auth import require_user
from app.services.gallery_reader import list_user_photos
from app.services.photo_upload import upload_quota
from db import get_db

router = APIRouter()


@router.get("/api/user/photo-count", response_class=JSONResponse)
async def user_photo_count(db: Session = Depends(get_db), user: User = Depends(require_user)):
    return JSONResponse(upload_quota(db, user.UserID, settings.MAX_UPLOADS_PER_USER))


@router.get("/api/user/photos", response_class=JSONResponse)
async def user_photos(db: Session = Depends(get_db), user: User = Depends(require_user)):
    photos = list_user_photos(db, user.UserID)
    return JSONResponse({"photos": [p.to_dict() for p in photos]})


@router.get("/api/user/role", response_class=JSONResponse)
async def user_role(user: User = Depends(require_user)):
    return JSONResponse({"userId": user.UserID, "role": user.Role})
