"""Single-row writes against the canonical store"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from storybridge.models import Reaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Reaction types a user can hold only once per story.
SINGULAR_REACTION_TYPES = ("like", "vote")


def save_with_retry(session: Session, record: T, apply: Callable[[T], None], attempts: int = 3) -> T:
    """Apply a change to ``record`` and commit it.

    When somebody else bumped the row's generation in between, the row is
    re-read and ``apply`` runs again on the fresh copy.
    """
    attempt = 1
    while True:
        apply(record)
        try:
            session.commit()
            return record
        except StaleDataError:
            session.rollback()
            if attempt >= attempts:
                logger.error(f"Giving up on {record!r} after {attempts} stale writes")
                raise
            logger.info(f"Stale write on {record!r}, retrying (attempt {attempt + 1}/{attempts})")
            session.refresh(record)
            attempt += 1


def insert_reaction(session: Session, reaction: Reaction) -> Reaction:
    """Add ``reaction`` unless a like/vote by the same user on the same story exists.

    Returns the row that ends up representing the reaction.
    """
    if reaction.type in SINGULAR_REACTION_TYPES:
        existing = (
            session.query(Reaction)
            .filter(
                Reaction.type == reaction.type,
                Reaction.story_id == reaction.story_id,
                Reaction.user_id == reaction.user_id,
                Reaction.deleted == False,  # noqa: E712
            )
            .order_by(Reaction.id)
            .first()
        )
        if existing is not None:
            logger.debug(f"Reusing {existing!r}")
            return existing
    session.add(reaction)
    session.flush()
    return reaction
