"""Reaction model"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from storybridge.models.base import Base
from storybridge.models.external_data import ExternalDataMixin

# Reactions that only exist because a story is tracked as an issue.
ISSUE_REACTION_TYPES = ("tracking", "note", "assignment")


class Reaction(ExternalDataMixin, Base):
    """A note, like, vote or tracking marker attached to a story"""

    __tablename__ = "reactions"
    field_kind = "reaction"

    id = Column(Integer, primary_key=True, index=True)
    generation = Column(Integer, nullable=False, default=1)

    # "note", "tracking", "assignment", "like", "vote", "comment"
    type = Column(String(32), nullable=False, default="", index=True)
    story_id = Column(Integer, ForeignKey("stories.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    published = Column(Boolean, default=False, nullable=False)
    ready = Column(Boolean, default=False, nullable=False)
    public = Column(Boolean, default=False, nullable=False)
    # Set when a user deleted the reaction by hand.
    suppressed = Column(Boolean, default=False, nullable=False)
    ptime = Column(DateTime, nullable=True)

    __mapper_args__ = {"version_id_col": generation}

    def __repr__(self):
        return f"<Reaction(id={self.id}, type='{self.type}', story_id={self.story_id})>"
