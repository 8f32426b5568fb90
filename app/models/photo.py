from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from app.models.user import Base, new_id, utcnow


class Photo(Base):
    __tablename__ = "Photo"
    PhotoID = Column(String(36), primary_key=True, default=new_id)
    UserID = Column(String(36), ForeignKey("Users.UserID"), nullable=False)
    # Opaque locator into blob storage, e.g. photos/<user>/<uuid>.jpeg
    S3Key = Column(String(512), nullable=False)
    S3Url = Column(String(1024), nullable=False)
    Description = Column(String(1000), nullable=True)
    ModerationApproved = Column(Boolean, nullable=False, default=True)
    ModerationLabels = Column(JSON, nullable=True)  # [{"name": ..., "confidence": ...}]
    RejectionReason = Column(Text, nullable=True)
    CreatedAt = Column(DateTime, nullable=False, default=utcnow)

    owner = relationship("User", back_populates="photos")

    __table_args__ = (
        Index("IX_Photo_CreatedAt_PhotoID", "CreatedAt", "PhotoID"),
        Index("IX_Photo_UserID", "UserID"),
    )

    def moderation_dict(self) -> dict:
        out: dict = {"approved": bool(self.ModerationApproved)}
        if self.ModerationLabels is not None:
            out["labels"] = self.ModerationLabels
        if self.RejectionReason:
            out["rejectionReason"] = self.RejectionReason
        return out

    def to_dict(self) -> dict:
        created = self.CreatedAt.isoformat() + "Z" if self.CreatedAt else None
        return {
            "id": self.PhotoID,
            "userId": self.UserID,
            "s3Key": self.S3Key,
            "s3Url": self.S3Url,
            "description": self.Description,
            "moderation": self.moderation_dict(),
            "createdAt": created,
        }
