from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from app.models.user import Base


class AppErrorLog(Base):
    """One row per request that ended in an error response."""

    __tablename__ = "AppErrorLog"
    ErrorID = Column(Integer, primary_key=True, autoincrement=True)
    OccurredAt = Column(DateTime, server_default=func.now())
    RequestID = Column(String(64), nullable=True)
    Path = Column(String(500), nullable=True)
    Method = Column(String(16), nullable=True)
    StatusCode = Column(Integer, nullable=True)
    # Exception class, e.g. NotFound or UpstreamFailure
    ErrorType = Column(String(100), nullable=True)
    UserID = Column(String(36), nullable=True)  # principal, when one was resolved
    ClientIP = Column(String(45), nullable=True)
    UserAgent = Column(String(255), nullable=True)
    Message = Column(Text, nullable=True)
    StackTrace = Column(Text, nullable=True)

    __table_args__ = (Index("IX_AppErrorLog_OccurredAt", "OccurredAt"),)
