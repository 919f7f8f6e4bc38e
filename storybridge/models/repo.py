"""Repo model"""
from sqlalchemy import Column, Integer, String

from storybridge.models.base import Base
from storybridge.models.external_data import ExternalDataMixin


class Repo(ExternalDataMixin, Base):
    """A code repository; linked to a project on an external server"""

    __tablename__ = "repos"
    field_kind = "repo"

    id = Column(Integer, primary_key=True, index=True)
    generation = Column(Integer, nullable=False, default=1)

    name = Column(String(256), nullable=False)

    __mapper_args__ = {"version_id_col": generation}

    @property
    def issues_enabled(self) -> bool:
        return bool((self.details or {}).get("issues_enabled", True))

    def __repr__(self):
        return f"<Repo(id={self.id}, name='{self.name}')>"
