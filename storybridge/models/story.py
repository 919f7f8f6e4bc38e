"""Story model"""
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from storybridge.models.base import Base
from storybridge.models.external_data import ExternalDataMixin


class Story(ExternalDataMixin, Base):
    """A post, an issue, a merge request or a push"""

    __tablename__ = "stories"
    field_kind = "story"

    id = Column(Integer, primary_key=True, index=True)
    generation = Column(Integer, nullable=False, default=1)

    # "post", "issue", "merge-request", "push", "branch"
    type = Column(String(32), nullable=False, default="post", index=True)
    tags = Column(JSON, default=list, nullable=False)
    # Authors; the lead author comes first.
    user_ids = Column(JSON, default=list, nullable=False)
    published = Column(Boolean, default=False, nullable=False)
    ready = Column(Boolean, default=False, nullable=False)
    public = Column(Boolean, default=False, nullable=False)
    suppressed = Column(Boolean, default=False, nullable=False)
    ptime = Column(DateTime, nullable=True)

    __mapper_args__ = {"version_id_col": generation}

    def __repr__(self):
        return f"<Story(id={self.id}, type='{self.type}')>"
