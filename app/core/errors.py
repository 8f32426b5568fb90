"""Error taxonomy shared by the gallery API.

Every error renders as JSON ``{"error": ..., "details": ...}`` via the handlers
registered in ``main.py``.
"""

from __future__ import annotations

from typing import Any, Optional


class GalleryError(Exception):
    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, error: Optional[str] = None, details: Optional[str] = None):
        self.error = error or self.default_message
        self.details = details
        super().__init__(self.error)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInput(GalleryError):
    status_code = 400
    default_message = "Invalid input"


class Unauthenticated(GalleryError):
    status_code = 401
    default_message = "Unauthorized"


class Unauthorized(GalleryError):
    status_code = 403
    default_message = "Forbidden"

    def __init__(
        self,
        error: Optional[str] = None,
        details: Optional[str] = None,
        unauthorized_ids: Optional[list[str]] = None,
    ):
        super().__init__(error, details)
        self.unauthorized_ids = list(unauthorized_ids or [])

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.unauthorized_ids:
            body["unauthorizedPhotoIds"] = self.unauthorized_ids
        return body


class NotFound(GalleryError):
    status_code = 404
    default_message = "Not found"


class UpstreamFailure(GalleryError):
    """Blob store, metadata store or classifier raised."""

    status_code = 500
    default_message = "Upstream failure"
