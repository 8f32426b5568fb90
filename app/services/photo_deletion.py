"""Single and batch photo deletion across blob storage and metadata.

The two stores are not transactional together. Each photo goes through two
best-effort phases: the blob object first (failure is logged, never blocking),
then the metadata row. A photo counts as deleted once its row is gone.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from sqlalchemy.orm import Session

from app.core.errors import NotFound, Unauthorized, UpstreamFailure
from app.models.photo import Photo
from app.models.user import User
from app.services.archive import resolve_photos, unique_ids

logger = logging.getLogger(__name__)
audit = logging.getLogger("audit")


@dataclass
class BatchResult:
    success: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"success": list(self.success), "failed": list(self.failed)}


def can_delete(principal: User, photo: Photo) -> bool:
    return principal.is_admin or principal.UserID == photo.UserID


class DeletionCoordinator:
    def __init__(self, db: Session, store: Any, batch_size: int = 5):
        self.db = db
        self.store = store
        self.batch_size = max(1, int(batch_size))

    def remove_blob(self, key: str) -> None:
        self.store.delete(key)

    def remove_metadata(self, photo: Photo) -> None:
        self.db.delete(photo)
        self.db.commit()

    async def _remove_blob_best_effort(self, photo_id: str, key: str) -> bool:
        # Orphaned blobs are tolerated; orphaned rows pointing at nothing are worse
        try:
            await asyncio.to_thread(self.remove_blob, key)
            return True
        except Exception as e:
            logger.error(
                "photo.blob_delete_failed",
                extra={"photo_id": photo_id, "key": key, "error": str(e)},
            )
            return False

    def _remove_metadata_or_rollback(self, photo: Photo) -> None:
        try:
            self.remove_metadata(photo)
        except Exception:
            self.db.rollback()
            raise

    async def delete_one(self, photo_id: str, principal: User) -> None:
        photo = self.db.query(Photo).filter(Photo.PhotoID == str(photo_id)).first()
        if photo is None:
            raise NotFound("Photo not found")
        if not can_delete(principal, photo):
            raise Unauthorized("You don't have permission to delete this photo")

        key = photo.S3Key
        await self._remove_blob_best_effort(photo.PhotoID, key)
        try:
            self._remove_metadata_or_rollback(photo)
        except Exception as e:
            logger.exception("photo.metadata_delete_failed", extra={"photo_id": photo_id})
            raise UpstreamFailure("Failed to delete photo", details=str(e)) from e
        audit.info(
            "photo.delete",
            extra={"photo_id": photo_id, "user_id": principal.UserID, "key": key},
        )

    async def delete_many(self, photo_ids: Sequence[Any], principal: User) -> BatchResult:
        """Delete every requested photo the principal may delete, or none at all.

        Authorization is all-or-nothing and checked before any I/O. After that,
        each item fails on its own without stopping the rest.
        """
        requested = unique_ids(photo_ids)
        photos = resolve_photos(self.db, requested)
        if not photos:
            raise NotFound("No photos found with the provided IDs")

        unauthorized = [p.PhotoID for p in photos if not can_delete(principal, p)]
        if unauthorized:
            audit.warning(
                "gallery.delete.batch.denied",
                extra={"user_id": principal.UserID, "unauthorized": unauthorized},
            )
            raise Unauthorized(
                "You don't have permission to delete some of these photos",
                unauthorized_ids=unauthorized,
            )

        result = BatchResult()
        for start in range(0, len(photos), self.batch_size):
            window = photos[start : start + self.batch_size]
            targets = [(p, p.PhotoID, p.S3Key) for p in window]
            # Blob deletes in a window run concurrently; rows are removed in order
            await asyncio.gather(
                *(self._remove_blob_best_effort(pid, key) for _, pid, key in targets)
            )
            for photo, pid, _ in targets:
                try:
                    self._remove_metadata_or_rollback(photo)
                except Exception as e:
                    logger.error(
                        "photo.metadata_delete_failed",
                        extra={"photo_id": pid, "error": str(e)},
                    )
                    result.failed.append({"id": pid, "error": str(e) or type(e).__name__})
                else:
                    result.success.append(pid)

        audit.info(
            "gallery.delete.batch",
            extra={
                "user_id": principal.UserID,
                "requested": len(requested),
                "deleted": len(result.success),
                "failed": len(result.failed),
            },
        )
        return result
