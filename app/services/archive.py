"""Bulk download: fetch photo objects and pack them into one zip archive."""

from __future__ import annotations

import asyncio
import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from app.core.errors import NotFound, UpstreamFailure
from app.models.photo import Photo
from app.services.stream_utils import read_body

logger = logging.getLogger(__name__)

DESCRIPTION_CHARS = 20
_UNSAFE = re.compile(r"[^A-Za-z0-9]")


@dataclass
class ArchiveResult:
    data: bytes
    entries: list[str] = field(default_factory=list)
    included_ids: list[str] = field(default_factory=list)
    # Resolved photos whose object could not be read; server-generated ids only
    skipped_ids: list[str] = field(default_factory=list)
    # Requested ids with no matching row; caller input, so only counted
    unresolved_count: int = 0

    @property
    def size(self) -> int:
        return len(self.data)


def unique_ids(photo_ids: Iterable[Any]) -> list[str]:
    """Requested ids as strings, first occurrence wins, order kept."""
    seen: dict[str, None] = {}
    for pid in photo_ids:
        seen.setdefault(str(pid), None)
    return list(seen)


def resolve_photos(db: Session, photo_ids: Sequence[str]) -> list[Photo]:
    """Look up all ids in one query and return them in requested order."""
    if not photo_ids:
        return []
    rows = db.query(Photo).filter(Photo.PhotoID.in_(list(photo_ids))).all()
    by_id = {row.PhotoID: row for row in rows}
    return [by_id[pid] for pid in photo_ids if pid in by_id]


def _extension(key: str) -> str:
    last = (key or "").rsplit("/", 1)[-1]
    if "." in last:
        ext = _UNSAFE.sub("", last.rsplit(".", 1)[-1])[:5]
        if ext:
            return ext.lower()
    return "jpg"


def entry_name(photo: Photo) -> str:
    """``photo-<timestamp>[-<description>]-<id>.<ext>``; the id suffix keeps names unique."""
    created = getattr(photo, "CreatedAt", None)
    prefix = f"photo-{created.strftime('%Y-%m-%d-%H-%M-%S')}" if created else "photo"
    description = (getattr(photo, "Description", None) or "").strip()
    desc = f"-{_UNSAFE.sub('_', description[:DESCRIPTION_CHARS])}" if description else ""
    return f"{prefix}{desc}-{photo.PhotoID}.{_extension(photo.S3Key)}"


def _zip_info(name: str, photo: Photo) -> zipfile.ZipInfo:
    created = getattr(photo, "CreatedAt", None)
    if created is not None and created.year >= 1980:
        info = zipfile.ZipInfo(name, date_time=created.timetuple()[:6])
    else:
        info = zipfile.ZipInfo(name)
    info.compress_type = zipfile.ZIP_DEFLATED
    return info


async def _fetch(store: Any, photo: Photo) -> Optional[bytes]:
    try:
        body = await asyncio.to_thread(store.get, photo.S3Key)
        return await read_body(body)
    except Exception as e:
        logger.warning(
            "archive.item_skipped",
            extra={"photo_id": photo.PhotoID, "key": photo.S3Key, "error": str(e)},
        )
        return None


def _windows(items: Sequence[Photo], size: int) -> Iterable[Sequence[Photo]]:
    size = max(1, int(size))
    for start in range(0, len(items), size):
        yield items[start : start + size]


async def build_archive(
    photos: Sequence[Photo],
    store: Any,
    batch_size: int = 5,
    compress_level: int = 6,
) -> ArchiveResult:
    """Fetch ``photos`` a window at a time and zip whatever could be read.

    Items inside a window are fetched concurrently; entries are written in
    the order given. A failed item is skipped, not fatal.
    """
    buf = io.BytesIO()
    result = ArchiveResult(data=b"")
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for n, window in enumerate(_windows(photos, batch_size), start=1):
            bodies = await asyncio.gather(*(_fetch(store, p) for p in window))
            for photo, data in zip(window, bodies):
                if data is None:
                    result.skipped_ids.append(photo.PhotoID)
                    continue
                name = entry_name(photo)
                zf.writestr(_zip_info(name, photo), data, compresslevel=compress_level)
                result.entries.append(name)
                result.included_ids.append(photo.PhotoID)
            logger.debug("archive.window_done", extra={"window": n, "items": len(window)})
    result.data = buf.getvalue()
    return result


async def assemble_download(
    db: Session,
    store: Any,
    photo_ids: Sequence[Any],
    batch_size: int = 5,
    timeout: Optional[float] = None,
    compress_level: int = 6,
) -> ArchiveResult:
    """Resolve ids, build the archive under ``timeout``.

    Raises ``NotFound`` when no id resolves and ``UpstreamFailure`` when the
    archive would be empty or the deadline passes; partial progress is dropped.
    """
    requested = unique_ids(photo_ids)
    photos = resolve_photos(db, requested)
    logger.info(
        "archive.resolved",
        extra={"requested": len(requested), "found": len(photos)},
    )
    if not photos:
        raise NotFound("No photos found with the provided IDs")

    try:
        result = await asyncio.wait_for(
            build_archive(photos, store, batch_size=batch_size, compress_level=compress_level),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise UpstreamFailure(
            "Failed to download photos", details=f"Archive not ready within {timeout} seconds"
        ) from None

    if not result.entries:
        raise UpstreamFailure(
            "Failed to download photos", details="None of the requested photos could be fetched"
        )
    result.unresolved_count = len(requested) - len(photos)
    return result
