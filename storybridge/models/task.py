"""Task model"""
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from storybridge.models.base import Base, utcnow


class Task(Base):
    """One unit of asynchronous work (an export, an import run)"""

    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    deleted = Column(Boolean, default=False, nullable=False)
    action = Column(String(64), nullable=False)
    # Client supplied correlation id; clients poll by this.
    token = Column(String(64), nullable=True, index=True)
    options = Column(JSON, default=dict, nullable=False)
    details = Column(JSON, default=dict, nullable=False)
    completion = Column(Integer, default=0, nullable=False)
    failed = Column(Boolean, default=False, nullable=False)
    seen = Column(Boolean, default=False, nullable=False)
    user_id = Column(Integer, nullable=True, index=True)
    etime = Column(DateTime, nullable=True)  # when it finished
    ctime = Column(DateTime, default=utcnow)
    mtime = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def finished(self) -> bool:
        return bool(self.failed) or self.completion >= 100

    def __repr__(self):
        return f"<Task(id={self.id}, action='{self.action}', completion={self.completion}, failed={self.failed})>"
