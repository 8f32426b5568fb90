"""Photo upload endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.dependencies import get_blob_store, get_broadcaster, get_moderator
from app.core.errors import InvalidInput
from app.core.settings import settings
from app.models.user import User
from app.services.auth import require_user
from app.services.broadcast import Broadcaster
from app.services.moderation import Moderator
from app.services.photo_upload import create_photo
from app.services.storage import BlobStore
from db import get_db

router = APIRouter()


@router.post("/api/upload", response_class=JSONResponse)
async def upload_photo(
    file: Optional[UploadFile] = File(None),
    description: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
    moderator: Moderator = Depends(get_moderator),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    user: User = Depends(require_user),
):
    if file is None:
        raise InvalidInput("No file provided")
    # Read one byte past the limit so oversized uploads are detectable
    data = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    photo = await create_photo(
        db,
        store,
        moderator,
        broadcaster,
        user,
        data,
        file.content_type,
        description,
        max_bytes=settings.MAX_UPLOAD_BYTES,
        max_uploads=settings.MAX_UPLOADS_PER_USER,
        allowed_prefixes=tuple(settings.ALLOWED_UPLOAD_MIME_PREFIXES),
    )
    payload = photo.to_dict()
    return JSONResponse(
        {
            "success": True,
            "photo": {
                "id": payload["id"],
                "url": payload["s3Url"],
                "createdAt": payload["createdAt"],
            },
        }
    )
