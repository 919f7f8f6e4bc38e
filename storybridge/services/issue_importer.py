"""Import of issues and merge requests as stories"""
import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from storybridge.errors import NotFound
from storybridge.models import Story
from storybridge.models.base import utcnow
from storybridge.services.localization import get_default_language
from storybridge.services.store import save_with_retry
from storybridge.services.timeutil import parse_gitlab_datetime
from storybridge.services.transport import Transport
from storybridge.services.user_importer import UserImporter
from storybridge.sync.links import extend_link, find_link, find_one_by_link, inherit_link
from storybridge.sync.merge import import_property

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

STORY_TYPES = {"issue": "issue", "merge_request": "merge-request"}


def label_names(labels: Optional[List[Any]]) -> List[str]:
    """REST payloads carry label names, webhooks carry label objects."""
    names = []
    for label in labels or []:
        name = (label.get("title") or label.get("name")) if isinstance(label, dict) else label
        if name:
            names.append(str(name))
    return names


def label_tags(labels: List[str]) -> List[str]:
    return ["#" + _WHITESPACE_RE.sub("-", label) for label in labels]


def import_issue_fields(story: Story, server_id: int, gl_issue: Dict[str, Any], title_overwrite: str = "always") -> bool:
    """Copy the fields an issue and its story share; returns True when anything changed."""
    labels = label_names(gl_issue.get("labels"))
    tags = list(story.tags or [])
    tags += [tag for tag in label_tags(labels) if tag not in tags]

    changed = False
    changed |= import_property(story, "gitlab", server_id, "details.title", gl_issue.get("title"), title_overwrite)
    changed |= import_property(story, "gitlab", server_id, "details.description", gl_issue.get("description") or "")
    changed |= import_property(story, "gitlab", server_id, "details.labels", labels)
    changed |= import_property(story, "gitlab", server_id, "details.state", gl_issue.get("state"))
    changed |= import_property(story, "gitlab", server_id, "tags", tags)
    return changed


class IssueImporter:
    def __init__(self, db: Session, transport: Optional[Transport] = None, user_importer: Optional[UserImporter] = None):
        self.db = db
        self.transport = transport or Transport()
        self.user_importer = user_importer or UserImporter(db, self.transport)

    def find_story(self, server, repo, kind: str, gl_object_id) -> Optional[Story]:
        criteria = extend_link(repo, "gitlab", server.id, {kind: {"id": gl_object_id}})
        return find_one_by_link(self.db, Story, criteria)

    def import_issue(self, server, repo, gl_issue: Dict[str, Any], kind: str = "issue") -> Story:
        """Create or update the story of an issue (``kind="issue"``) or merge request."""
        repo_link = find_link(repo, "gitlab", server.id)
        if repo_link is None or repo_link.keys.project is None:
            raise NotFound(f"Repo {repo.id} is not linked to server {server.id}")

        story = self.find_story(server, repo, kind, gl_issue["id"])
        if story is None:
            author_id = (gl_issue.get("author") or {}).get("id") or gl_issue.get("author_id")
            author = self.user_importer.find_or_import(server, author_id) if author_id else None
            story = Story(
                type=STORY_TYPES[kind],
                tags=[],
                user_ids=[author.id] if author else [],
                published=True,
                ready=True,
                public=not gl_issue.get("confidential", False),
                ptime=parse_gitlab_datetime(gl_issue.get("created_at")) or utcnow(),
                details={},
                links=[],
                exchange=[],
            )
            self.db.add(story)
            logger.info(f"Importing {kind} {gl_issue.get('iid')} of repo {repo.id} as a new story")

        def apply(story: Story) -> None:
            inherit_link(
                story,
                "gitlab",
                server.id,
                {
                    "project": repo_link.keys.project.model_dump(exclude_none=True),
                    kind: {"id": gl_issue["id"], "number": gl_issue.get("iid")},
                },
            )
            changed = import_issue_fields(story, server.id, gl_issue, "match-previous:details.title")
            if not (story.details or {}).get("exported"):
                # Only the story of an issue that started out remote mirrors its text
                text = {get_default_language(): gl_issue.get("description") or ""}
                changed |= import_property(story, "gitlab", server.id, "details.text", text, "match-previous:details.text")
            if changed:
                story.itime = utcnow()

        return save_with_retry(self.db, story, apply)
