import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # Naive UTC with microseconds; keeps recency ordering stable across backends
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "Users"
    UserID = Column(String(36), primary_key=True, default=new_id)
    # Identifier issued by the external identity provider
    ExternalID = Column(String(255), nullable=False, unique=True)
    Email = Column(String(255), nullable=True)
    Username = Column(String(100), nullable=True)
    FirstName = Column(String(100), nullable=True)
    LastName = Column(String(100), nullable=True)
    AvatarUrl = Column(String(1024), nullable=True)
    Role = Column(String(16), nullable=False, default=ROLE_USER)
    DateCreated = Column(DateTime, server_default=func.now())
    LastUpdated = Column(DateTime, server_default=func.now(), onupdate=func.now())

    photos = relationship("Photo", back_populates="owner")

    @property
    def is_admin(self) -> bool:
        return (self.Role or "").upper() == ROLE_ADMIN

    @property
    def display_name(self) -> str:
        if self.FirstName:
            return f"{self.FirstName} {self.LastName}" if self.LastName else self.FirstName
        return "Anonymous"


class UserSession(Base):
    __tablename__ = "UserSession"
    SessionID = Column(Uuid, primary_key=True, default=uuid.uuid4)
    UserID = Column(String(36), ForeignKey("Users.UserID"), nullable=False)
    CreatedAt = Column(DateTime, server_default=func.now())
    ExpiresAt = Column(DateTime, nullable=True)
    IsActive = Column(Boolean, default=True)
    LastSeen = Column(DateTime, server_default=func.now())
    IPAddress = Column(String(45), nullable=True)
    UserAgent = Column(String(255), nullable=True)
