"""Sync log model"""
from sqlalchemy import Column, Integer, ForeignKey, DateTime, Text, Enum
from sqlalchemy.orm import relationship
import enum
from storybridge.models.base import Base, utcnow


class SyncStatus(str, enum.Enum):
    """Sync status enumeration"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class SyncDirection(str, enum.Enum):
    """Sync direction enumeration"""
    IMPORT = "import"
    EXPORT = "export"


class SyncLog(Base):
    """Log of import and export runs"""

    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)

    repo_id = Column(Integer, ForeignKey("repos.id"), nullable=True)
    story_id = Column(Integer, nullable=True)
    task_id = Column(Integer, nullable=True)

    status = Column(Enum(SyncStatus), nullable=False)
    direction = Column(Enum(SyncDirection), nullable=True)
    message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    repo = relationship("Repo")

    def __repr__(self):
        return f"<SyncLog(status={self.status}, direction={self.direction})>"
