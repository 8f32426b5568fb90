"""Upload path: validate, moderate, store the object, then record the Photo."""

from __future__ import annotations

import asyncio
import io
import logging
import uuid
from typing import Any, Optional

from PIL import Image, UnidentifiedImageError
from sqlalchemy.orm import Session

from app.core.errors import InvalidInput, UpstreamFailure
from app.models.photo import Photo
from app.models.user import User
from app.services.broadcast import NEW_PHOTO, Broadcaster, GalleryUpdate
from app.services.moderation import ModerationError, Moderator

logger = logging.getLogger(__name__)
audit = logging.getLogger("audit")


class PhotoRejected(InvalidInput):
    default_message = "Image rejected"

    def __init__(self, reason: Optional[str] = None):
        super().__init__(details=reason)
        self.reason = reason

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["reason"] = self.reason
        return body


def sniff_image_mime(data: bytes, declared: Optional[str] = None) -> str:
    """MIME type from the decoded image header; raises InvalidInput for non-images."""
    try:
        with Image.open(io.BytesIO(data)) as im:
            fmt = im.format
            im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        raise InvalidInput("Only image files are allowed") from None
    return Image.MIME.get(fmt or "", declared or "application/octet-stream")


def object_key(user_id: str, content_type: str) -> str:
    ext = (content_type.split("/", 1)[1] if "/" in content_type else "") or "jpg"
    return f"photos/{user_id}/{uuid.uuid4()}.{ext}"


def upload_count(db: Session, user_id: str) -> int:
    return db.query(Photo).filter(Photo.UserID == user_id).count()


def upload_quota(db: Session, user_id: str, max_uploads: int) -> dict:
    count = upload_count(db, user_id)
    return {
        "count": count,
        "remainingUploads": max(0, int(max_uploads) - count),
        "maxUploads": int(max_uploads),
    }


async def create_photo(
    db: Session,
    store: Any,
    moderator: Moderator,
    broadcaster: Broadcaster,
    user: User,
    data: bytes,
    declared_type: Optional[str],
    description: Optional[str] = None,
    *,
    max_bytes: int,
    max_uploads: int,
    allowed_prefixes: tuple[str, ...] = ("image/",),
) -> Photo:
    if not data:
        raise InvalidInput("No file provided")
    if len(data) > max_bytes:
        raise InvalidInput("File too large", details=f"Maximum size is {max_bytes} bytes")
    if declared_type and not declared_type.startswith(allowed_prefixes):
        raise InvalidInput("Only image files are allowed")
    content_type = sniff_image_mime(data, declared_type)
    if not content_type.startswith(allowed_prefixes):
        raise InvalidInput("Only image files are allowed")
    if upload_count(db, user.UserID) >= max_uploads:
        raise InvalidInput(
            "Upload limit reached", details=f"Each user may upload {max_uploads} photos"
        )

    try:
        verdict = await asyncio.to_thread(moderator.classify, data)
    except ModerationError as e:
        raise UpstreamFailure("Failed to process upload", details=str(e)) from e
    if not verdict.approved:
        audit.info(
            "photo.upload.rejected",
            extra={"user_id": user.UserID, "reason": verdict.rejection_reason},
        )
        raise PhotoRejected(verdict.rejection_reason)

    # Storage first, metadata second: a row never points at an unwritten object
    key = object_key(user.UserID, content_type)
    try:
        url = await asyncio.to_thread(store.put, key, data, content_type)
    except Exception as e:
        logger.exception("photo.upload.store_failed", extra={"key": key})
        raise UpstreamFailure("Failed to process upload", details=str(e)) from e

    photo = Photo(
        UserID=user.UserID,
        S3Key=key,
        S3Url=url,
        Description=(description or "").strip() or None,
        ModerationApproved=True,
        ModerationLabels=verdict.labels,
        RejectionReason=None,
    )
    try:
        db.add(photo)
        db.commit()
        db.refresh(photo)
    except Exception as e:
        db.rollback()
        logger.exception("photo.upload.metadata_failed", extra={"key": key})
        try:
            await asyncio.to_thread(store.delete, key)
        except Exception:
            logger.warning("photo.upload.orphaned_blob", extra={"key": key})
        raise UpstreamFailure("Failed to process upload", details=str(e)) from e

    audit.info(
        "photo.upload",
        extra={"photo_id": photo.PhotoID, "user_id": user.UserID, "bytes": len(data)},
    )
    await broadcaster.publish(GalleryUpdate(type=NEW_PHOTO, photo_id=photo.PhotoID))
    return photo
