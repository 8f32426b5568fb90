"""Single-photo endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.dependencies import get_blob_store, get_broadcaster
from app.core.errors import NotFound
from app.models.photo import Photo
from app.models.user import User
from app.services.auth import require_user
from app.services.broadcast import PHOTO_DELETED, Broadcaster, GalleryUpdate
from app.services.gallery_reader import shape_photo
from app.services.photo_deletion import DeletionCoordinator
from app.services.storage import BlobStore
from db import get_db

router = APIRouter()


@router.get("/api/photos/{photo_id}", response_class=JSONResponse)
async def photo_detail(photo_id: str, db: Session = Depends(get_db)):
    photo = db.query(Photo).filter(Photo.PhotoID == photo_id).first()
    if photo is None:
        raise NotFound("Photo not found")
    return JSONResponse({"photo": shape_photo(photo)})


@router.delete("/api/photos/{photo_id}", response_class=JSONResponse)
async def photo_delete(
    photo_id: str,
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    user: User = Depends(require_user),
):
    await DeletionCoordinator(db, store).delete_one(photo_id, user)
    await broadcaster.publish(GalleryUpdate(type=PHOTO_DELETED, photo_id=photo_id))
    return JSONResponse({"success": True})
