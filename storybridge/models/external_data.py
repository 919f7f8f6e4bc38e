"""Columns shared by rows that can be linked to objects on external servers"""
from sqlalchemy import JSON, Boolean, Column, DateTime, Text

from storybridge.models.base import utcnow


class ExternalDataMixin:
    """Soft-delete flag, open details, and the link/exchange bookkeeping.

    ``links`` and ``exchange`` are only ever written through
    ``storybridge.sync.links`` and ``storybridge.sync.merge``; ``link_tokens``
    is derived from ``links`` so rows can be looked up by external identity.

    Each model declares its own ``generation`` column and passes it to
    ``__mapper_args__["version_id_col"]``.
    """

    # Which field set of the path accessor applies to this row
    field_kind = ""

    deleted = Column(Boolean, default=False, nullable=False, index=True)
    details = Column(JSON, default=dict, nullable=False)
    links = Column(JSON, default=list, nullable=False)
    exchange = Column(JSON, default=list, nullable=False)
    link_tokens = Column(Text, default="", nullable=False)

    itime = Column(DateTime, nullable=True)  # last successful import
    etime = Column(DateTime, nullable=True)  # last successful export
    ctime = Column(DateTime, default=utcnow)
    mtime = Column(DateTime, default=utcnow, onupdate=utcnow)
