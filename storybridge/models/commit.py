"""Commit model"""
from sqlalchemy import Column, Integer, String

from storybridge.models.base import Base
from storybridge.models.external_data import ExternalDataMixin


class Commit(ExternalDataMixin, Base):
    """A commit imported from a repository"""

    __tablename__ = "commits"
    field_kind = "commit"

    id = Column(Integer, primary_key=True, index=True)
    generation = Column(Integer, nullable=False, default=1)

    # md5 of the commit title; note events only carry the title.
    title_hash = Column(String(32), nullable=False, index=True)
    initial_branch = Column(String(256), nullable=True)

    __mapper_args__ = {"version_id_col": generation}

    def __repr__(self):
        return f"<Commit(id={self.id}, title_hash='{self.title_hash}')>"
