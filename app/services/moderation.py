"""Image moderation gate run before a Photo is created (AWS Rekognition)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence

import boto3

logger = logging.getLogger(__name__)


class ModerationError(RuntimeError):
    """The classifier could not be reached or returned garbage."""


@dataclass
class ModerationResult:
    approved: bool
    labels: list[dict] = field(default_factory=list)
    rejection_reason: Optional[str] = None

    def to_dict(self) -> dict:
        out: dict = {"approved": self.approved, "labels": self.labels}
        if self.rejection_reason:
            out["rejectionReason"] = self.rejection_reason
        return out


class Moderator(Protocol):
    def classify(self, image: bytes) -> ModerationResult: ...


class RekognitionModerator:
    def __init__(
        self,
        region: str,
        threshold: float,
        rejected_categories: Sequence[str],
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        client: Any = None,
    ):
        self.threshold = float(threshold)
        self.rejected_categories = tuple(rejected_categories)
        self.client = client or boto3.client(
            "rekognition",
            region_name=region,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
        )

    def classify(self, image: bytes) -> ModerationResult:
        try:
            response = self.client.detect_moderation_labels(
                Image={"Bytes": image},
                MinConfidence=self.threshold,
            )
        except Exception as e:
            logger.error(f"Moderation error: {e}")
            raise ModerationError("Failed to moderate image") from e

        labels = [
            {
                "name": label.get("Name") or "Unknown",
                "confidence": float(label.get("Confidence") or 0),
            }
            for label in response.get("ModerationLabels") or []
        ]
        for label in labels:
            if label["confidence"] < self.threshold:
                continue
            if any(cat in label["name"] for cat in self.rejected_categories):
                return ModerationResult(
                    approved=False,
                    labels=labels,
                    rejection_reason=f"Image contains inappropriate content ({label['name']})",
                )
        return ModerationResult(approved=True, labels=labels)


class AllowAllModerator:
    """Used when moderation is switched off (local development)."""

    def classify(self, image: bytes) -> ModerationResult:
        return ModerationResult(approved=True)


def build_moderator(settings) -> Moderator:
    if not settings.MODERATION_ENABLED:
        logger.warning("Moderation disabled; every upload will be approved")
        return AllowAllModerator()
    return RekognitionModerator(
        region=settings.AWS_REGION,
        threshold=settings.MODERATION_CONFIDENCE_THRESHOLD,
        rejected_categories=settings.MODERATION_REJECTED_CATEGORIES,
        access_key=settings.AWS_ACCESS_KEY_ID,
        secret_key=settings.AWS_SECRET_ACCESS_KEY,
    )
