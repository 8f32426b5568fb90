"""Page-by-page gallery listing, newest first."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session, contains_eager

from app.models.photo import Photo
from app.models.user import User


@dataclass
class GalleryPage:
    items: list[Photo] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 12

    @property
    def page_count(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0

    @property
    def has_more(self) -> bool:
        return len(self.items) == self.page_size and self.page < self.page_count

    def pagination(self) -> dict:
        return {
            "total": self.total,
            "pages": self.page_count,
            "currentPage": self.page,
            "limit": self.page_size,
        }


def clamp_page_size(requested: Optional[int], default: int, maximum: int) -> int:
    if requested is None or requested < 1:
        return default
    return min(int(requested), int(maximum))


def _base_query(db: Session):
    # Inner join drops photos whose owner no longer resolves
    return db.query(Photo).join(User, User.UserID == Photo.UserID)


def count_photos(db: Session) -> int:
    return _base_query(db).count()


def list_photos(db: Session, page: int, page_size: int, count_only: bool = False) -> GalleryPage:
    """Return one page of photos; pages past the end come back empty, never as errors."""
    page = max(1, int(page))
    result = GalleryPage(total=count_photos(db), page=page, page_size=page_size)
    if count_only or result.total == 0 or page > result.page_count:
        return result
    result.items = (
        _base_query(db)
        .options(contains_eager(Photo.owner))
        .order_by(Photo.CreatedAt.desc(), Photo.PhotoID.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return result


def list_user_photos(db: Session, user_id: str) -> list[Photo]:
    return (
        db.query(Photo)
        .filter(Photo.UserID == user_id)
        .order_by(Photo.CreatedAt.desc(), Photo.PhotoID.desc())
        .all()
    )


def shape_photo(photo: Photo) -> dict:
    """Photo JSON with the owner collapsed to ``{name, avatar}``."""
    data = photo.to_dict()
    owner = photo.owner
    data["user"] = {
        "name": owner.display_name if owner is not None else "Anonymous",
        "avatar": owner.AvatarUrl if owner is not None else None,
    }
    return data
