"""External server model"""

from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from storybridge.models.base import Base


class Server(Base):
    """Credentials and import policy for one external service instance"""

    __tablename__ = "servers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False, index=True)
    type = Column(String, nullable=False, default="gitlab")
    url = Column(String, nullable=False)
    access_token = Column(String, nullable=False)
    # "private" (personal/impersonation token) or "oauth"
    token_type = Column(String, nullable=False, default="private")
    # Shared secret GitLab sends in X-Gitlab-Token; unchecked when empty.
    hook_token = Column(String, nullable=True)
    disabled = Column(Boolean, default=False, nullable=False)
    deleted = Column(Boolean, default=False, nullable=False)
    # {"user": {"type": "regular", "mapping": {"admin": "admin", "user": "regular", "external": "guest"}}}
    settings = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Server(name='{self.name}', type='{self.type}', url='{self.url}')>"
