"""Gallery endpoints: listing, live updates, bulk download and bulk delete."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.dependencies import get_blob_store, get_broadcaster, get_connection_registry
from app.core.errors import InvalidInput
from app.core.settings import settings
from app.models.user import User
from app.services.archive import assemble_download
from app.services.auth import require_user
from app.services.broadcast import CONNECTED_FRAME, PHOTO_DELETED, Broadcaster, GalleryUpdate
from app.services.connections import ConnectionRegistry
from app.services.gallery_reader import clamp_page_size, list_photos, shape_photo
from app.services.photo_deletion import DeletionCoordinator
from app.services.storage import BlobStore
from db import get_db

router = APIRouter()
audit = logging.getLogger("audit")

# At most this many ids are listed in X-Skipped-Photo-Ids
SKIPPED_HEADER_MAX_IDS = 50


class PhotoIdsRequest(BaseModel):
    photoIds: list[str]


class DownloadRequest(PhotoIdsRequest):
    timeoutSeconds: Optional[float] = None


def _validated_ids(photo_ids: list[str]) -> list[str]:
    ids = [pid.strip() for pid in photo_ids if pid and pid.strip()]
    if not ids:
        raise InvalidInput("Invalid photo IDs provided")
    if len(ids) > settings.BATCH_MAX_IDS:
        raise InvalidInput(
            "Too many photo IDs", details=f"At most {settings.BATCH_MAX_IDS} per request"
        )
    return ids


def _archive_timeout(requested: Optional[float]) -> float:
    if requested is None or requested <= 0:
        return settings.ARCHIVE_TIMEOUT_SECONDS
    return min(float(requested), settings.ARCHIVE_MAX_TIMEOUT_SECONDS)


@router.get("/api/gallery", response_class=JSONResponse)
async def gallery_list(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None),
    count: bool = Query(False),
    db: Session = Depends(get_db),
):
    page_size = clamp_page_size(
        limit, settings.GALLERY_DEFAULT_PAGE_SIZE, settings.GALLERY_MAX_PAGE_SIZE
    )
    result = list_photos(db, page=page, page_size=page_size, count_only=count)
    if count:
        return JSONResponse({"pagination": result.pagination()})
    return JSONResponse(
        {
            "photos": [shape_photo(p) for p in result.items],
            "pagination": result.pagination(),
        }
    )


async def stream_updates(registry: ConnectionRegistry, connection_id: str) -> AsyncIterator[str]:
    """Frames for one live connection; unregisters as soon as the stream ends.

    The transport cancels this generator when the client goes away, which
    runs the ``finally`` block immediately.
    """
    channel = registry.get(connection_id)
    try:
        if channel is None:
            return
        yield CONNECTED_FRAME
        while not channel.closed:
            yield await channel.next_frame()
    finally:
        registry.unregister(connection_id)
        audit.info("live.close", extra={"connection_id": connection_id})


@router.get("/api/gallery/updates")
async def gallery_updates(
    request: Request,
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    connection_id = registry.register()
    audit.info(
        "live.open",
        extra={
            "connection_id": connection_id,
            "connections": len(registry),
            "client": request.client.host if request.client else None,
            "request_id": getattr(request.state, "request_id", None),
        },
    )
    return StreamingResponse(
        stream_updates(registry, connection_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/api/gallery/download")
async def gallery_download(
    request: Request,
    body: DownloadRequest,
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
    user: User = Depends(require_user),
):
    ids = _validated_ids(body.photoIds)
    timeout = _archive_timeout(body.timeoutSeconds)
    result = await assemble_download(
        db,
        store,
        ids,
        batch_size=settings.ARCHIVE_BATCH_SIZE,
        timeout=timeout,
        compress_level=settings.ARCHIVE_COMPRESS_LEVEL,
    )
    audit.info(
        "gallery.download",
        extra={
            "user_id": user.UserID,
            "requested": len(ids),
            "entries": len(result.entries),
            "skipped": len(result.skipped_ids),
            "unresolved": result.unresolved_count,
            "bytes": result.size,
            "request_id": getattr(request.state, "request_id", None),
        },
    )
    headers = {
        "Content-Disposition": f'attachment; filename="{settings.ARCHIVE_FILENAME}"',
        "X-Archive-Entries": str(len(result.entries)),
        "X-Skipped-Photo-Count": str(len(result.skipped_ids)),
        "X-Skipped-Photo-Ids": ",".join(result.skipped_ids[:SKIPPED_HEADER_MAX_IDS]),
        "X-Unresolved-Photo-Count": str(result.unresolved_count),
    }
    return Response(content=result.data, media_type="application/zip", headers=headers)


@router.post("/api/gallery/delete-multiple", response_class=JSONResponse)
async def gallery_delete_multiple(
    body: PhotoIdsRequest,
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    user: User = Depends(require_user),
):
    ids = _validated_ids(body.photoIds)
    coordinator = DeletionCoordinator(db, store, batch_size=settings.ARCHIVE_BATCH_SIZE)
    result = await coordinator.delete_many(ids, user)
    for photo_id in result.success:
        await broadcaster.publish(GalleryUpdate(type=PHOTO_DELETED, photo_id=photo_id))
    message = f"Successfully deleted {len(result.success)} photos"
    if result.failed:
        message += f", {len(result.failed)} failed"
    return JSONResponse({"message": message, "results": result.to_dict()})
