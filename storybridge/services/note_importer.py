"""Import of notes and award emoji as reactions"""
import hashlib
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from storybridge.models import Commit, Reaction, Story, User
from storybridge.models.base import utcnow
from storybridge.services.localization import get_default_language
from storybridge.services.store import insert_reaction
from storybridge.services.timeutil import parse_gitlab_datetime
from storybridge.services.transport import Transport
from storybridge.services.user_importer import UserImporter
from storybridge.sync.links import extend_link, find_by_link, find_link, find_one_by_link, inherit_link
from storybridge.sync.merge import import_property

logger = logging.getLogger(__name__)

# GitLab award emoji that map onto reactions
AWARD_REACTION_TYPES = {"thumbsup": "like", "thumbsdown": "vote"}


def title_hash(text: Optional[str]) -> str:
    return hashlib.md5((text or "").encode("utf-8")).hexdigest()


def _noteable_kind(noteable_type: Optional[str]) -> Optional[str]:
    noteable_type = (noteable_type or "").lower()
    if noteable_type == "issue":
        return "issue"
    if noteable_type in ("mergerequest", "merge_request"):
        return "merge_request"
    if noteable_type == "commit":
        return "commit"
    return None


class NoteImporter:
    """Turns a note activity event into a ``note`` reaction on the matching story.

    Events look like GitLab's ``/projects/:id/events`` entries:
    ``{"author_id": .., "target_title": .., "note": {"id", "body",
    "noteable_type", "noteable_id", "created_at"}}``.
    """

    def __init__(self, db: Session, transport: Optional[Transport] = None, user_importer: Optional[UserImporter] = None):
        self.db = db
        self.transport = transport or Transport()
        self.user_importer = user_importer or UserImporter(db, self.transport)

    def import_event(self, server, repo, event: Dict[str, Any], hook: Optional[Dict[str, Any]] = None) -> Optional[Reaction]:
        note = event.get("note") or {}
        kind = _noteable_kind(note.get("noteable_type"))
        if kind is None:
            logger.debug(f"Ignoring note on {note.get('noteable_type')}")
            return None

        existing = find_one_by_link(
            self.db, Reaction, extend_link(repo, "gitlab", server.id, {"note": {"id": note["id"]}})
        )
        if existing is not None:
            logger.debug(f"Note {note['id']} already imported as {existing!r}")
            return existing

        commit_id = None
        if kind == "commit":
            # The activity log does not say which commit the note is on
            commit_id = self.find_commit_id(server, repo, event, hook)
            if commit_id is None:
                logger.info(f"Could not place note {note['id']} on a commit")
                return None
            story = find_one_by_link(self.db, Story, extend_link(repo, "gitlab", server.id, {"commit": {"id": commit_id}}))
        else:
            story = find_one_by_link(
                self.db, Story, extend_link(repo, "gitlab", server.id, {kind: {"id": note.get("noteable_id")}})
            )
        if story is None:
            logger.debug(f"No story for note {note['id']} ({kind})")
            return None

        author = self.user_importer.find_or_import(server, event.get("author_id") or (note.get("author") or {}).get("id"))
        reaction = Reaction(details={}, links=[], exchange=[])
        keys = dict(find_link(story, "gitlab", server.id).keys.model_dump(exclude_none=True))
        keys["note"] = {"id": note["id"]}
        if commit_id is not None:
            # Link to the one commit, whereas the story may span several
            keys["commit"] = {"id": commit_id}
        inherit_link(reaction, "gitlab", server.id, keys)
        self._copy_properties(reaction, server, story, author, "note", note.get("created_at"))
        import_property(reaction, "gitlab", server.id, "details.text", {get_default_language(): note.get("body") or ""})
        reaction = insert_reaction(self.db, reaction)
        self.db.commit()
        logger.info(f"Imported note {note['id']} on story {story.id}")
        return reaction

    def import_award(self, server, repo, award: Dict[str, Any], user_data: Dict[str, Any]) -> Optional[Reaction]:
        """Award emoji hook: ``thumbsup`` becomes a like, ``thumbsdown`` a vote."""
        type = AWARD_REACTION_TYPES.get(award.get("name"))
        kind = _noteable_kind(award.get("awardable_type"))
        if type is None or kind not in ("issue", "merge_request"):
            return None
        story = find_one_by_link(
            self.db, Story, extend_link(repo, "gitlab", server.id, {kind: {"id": award.get("awardable_id")}})
        )
        if story is None:
            return None
        author = self.user_importer.find_or_import(server, user_data["id"])
        reaction = Reaction(details={}, links=[], exchange=[])
        inherit_link(reaction, "gitlab", server.id, find_link(story, "gitlab", server.id).keys)
        self._copy_properties(reaction, server, story, author, type, award.get("created_at"))
        reaction = insert_reaction(self.db, reaction)
        self.db.commit()
        return reaction

    def find_commit_id(self, server, repo, event: Dict[str, Any], hook: Optional[Dict[str, Any]] = None) -> Optional[str]:
        note = event.get("note") or {}
        if hook:
            attributes = hook.get("object_attributes") or {}
            if attributes.get("id") == note.get("id") and attributes.get("commit_id"):
                return attributes["commit_id"]

        # Best effort: commits with the same title are told apart by looking
        # for the note among their comments. Two commits with the same title
        # and an identical comment are indistinguishable.
        criteria = extend_link(repo, "gitlab", server.id)
        digest = title_hash(event.get("target_title"))
        matches = []
        for commit in find_by_link(self.db, Commit, criteria):
            if commit.title_hash != digest:
                continue
            link = find_link(commit, "gitlab", server.id)
            sha = link.keys.commit.id
            comments = self.transport.fetch_all(
                server, f"/projects/{link.keys.project.id}/repository/commits/{sha}/comments"
            )
            if any(comment.get("note") == note.get("body") for comment in comments):
                matches.append(sha)
        if len(matches) != 1:
            if matches:
                logger.warning(f"Note {note.get('id')} matches {len(matches)} commits titled {event.get('target_title')!r}")
            return None
        return matches[0]

    @staticmethod
    def _copy_properties(reaction: Reaction, server, story: Story, author: User, type: str, created_at) -> None:
        import_property(reaction, "gitlab", server.id, "type", type)
        import_property(reaction, "gitlab", server.id, "story_id", story.id)
        import_property(reaction, "gitlab", server.id, "user_id", author.id)
        import_property(reaction, "gitlab", server.id, "public", True)
        import_property(reaction, "gitlab", server.id, "published", True)
        import_property(reaction, "gitlab", server.id, "ready", True)
        import_property(reaction, "gitlab", server.id, "ptime", parse_gitlab_datetime(created_at) or utcnow())
        reaction.itime = utcnow()
