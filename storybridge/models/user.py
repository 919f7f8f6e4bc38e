"""User model"""
from sqlalchemy import Boolean, Column, Integer, String

from storybridge.models.base import Base
from storybridge.models.external_data import ExternalDataMixin

# Ordered from least to most privileged.
USER_TYPES = ("guest", "regular", "moderator", "admin")


class User(ExternalDataMixin, Base):
    """Local user account, possibly linked to accounts on external servers"""

    __tablename__ = "users"
    field_kind = "user"

    id = Column(Integer, primary_key=True, index=True)
    generation = Column(Integer, nullable=False, default=1)

    type = Column(String(32), nullable=False, default="regular")
    username = Column(String(128), nullable=True, index=True)
    email = Column(String(256), nullable=True, index=True)
    disabled = Column(Boolean, default=False, nullable=False)

    __mapper_args__ = {"version_id_col": generation}

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', type='{self.type}')>"
