"""Export of stories to issue trackers.

The state of an export is never stored: every run derives ``repo_before``
(where the story's issue lives now, from its links) and ``repo_after``
(where the task wants it) and picks a transition with ``plan_transition``.
Links are the durable record of what has been created remotely, so a rerun
after a failure picks up where the previous run stopped.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from storybridge.config import settings
from storybridge.errors import BadRequest, Forbidden, NotFound, UpstreamFailure
from storybridge.models import Reaction, Repo, Server, Story, SyncLog, User
from storybridge.models.base import utcnow
from storybridge.models.reaction import ISSUE_REACTION_TYPES
from storybridge.models.sync_log import SyncDirection, SyncStatus
from storybridge.services.issue_importer import import_issue_fields
from storybridge.services.issue_text import generate_issue_text
from storybridge.services.store import insert_reaction, save_with_retry
from storybridge.services.transport import Transport
from storybridge.sync.links import (
    ExternalLink,
    ObjectKeys,
    ObjectRef,
    find_link,
    find_links,
    find_one_by_link,
    get_links,
    inherit_link,
    remove_link,
)
from storybridge.sync.merge import clear_snapshot, export_property, import_property, record_exported
from storybridge.sync.paths import delete_path

logger = logging.getLogger(__name__)

# Story fields that only make sense while the story is tracked as an issue
ISSUE_ONLY_PATHS = ("details.title", "details.labels", "details.exported")


class ExportIssueOptions(BaseModel):
    story_id: int
    # Destination repo; none means "stop tracking this story"
    repo_id: Optional[int] = None
    title: Optional[str] = None
    labels: List[str] = []


class Transition(str, enum.Enum):
    NOOP = "noop"
    CREATE = "create"
    UPDATE = "update"
    MOVE = "move"
    CREATE_THEN_REMOVE = "create-then-remove"
    REMOVE = "remove"


@dataclass(frozen=True)
class RepoTarget:
    """Where a repo lives, as far as the exporter is concerned"""

    repo_id: int
    server_id: Optional[int]
    issues_enabled: bool = True

    @property
    def has_tracker(self) -> bool:
        return self.server_id is not None and self.issues_enabled

    @classmethod
    def of(cls, repo: Repo) -> "RepoTarget":
        link = find_link(repo, "gitlab")
        return cls(repo.id, link.server_id if link else None, repo.issues_enabled)


def plan_transition(before: Optional[RepoTarget], after: Optional[RepoTarget]) -> Transition:
    if before is None and after is None:
        return Transition.NOOP
    if before is None:
        if not after.has_tracker:
            raise BadRequest(f"Repo {after.repo_id} has no issue tracker")
        return Transition.CREATE
    if after is None or not after.has_tracker:
        return Transition.REMOVE
    if before.repo_id == after.repo_id:
        return Transition.UPDATE
    if before.server_id == after.server_id:
        return Transition.MOVE
    return Transition.CREATE_THEN_REMOVE


def _issue_payload(draft: Dict[str, Any]) -> Dict[str, Any]:
    payload = {key: draft[key] for key in ("title", "description", "confidential") if key in draft}
    if "labels" in draft:
        # GitLab API expects comma-separated string for `labels`
        payload["labels"] = ",".join(draft.get("labels") or [])
    return payload


def _issue_draft(gl_issue: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not gl_issue:
        return {}
    return {
        "title": gl_issue.get("title"),
        "description": gl_issue.get("description") or "",
        "confidential": bool(gl_issue.get("confidential")),
        "labels": list(gl_issue.get("labels") or []),
    }


class IssueExporter:
    """Carries out one ``export-issue`` task"""

    def __init__(self, db: Session, transport: Optional[Transport] = None, address: Optional[str] = None):
        self.db = db
        self.transport = transport or Transport()
        self.address = address if address is not None else settings.site_address

    # --- entry point -------------------------------------------------------

    def export_story(self, task, progress=None) -> Dict[str, Any]:
        try:
            options = ExportIssueOptions.model_validate(task.options or {})
        except ValidationError as e:
            raise BadRequest(f"Invalid export options: {e}") from e

        story = self._find_story(options.story_id)
        user = self._find_user(task.user_id)
        repo_after = self._find_repo(options.repo_id) if options.repo_id else None
        target_after = RepoTarget.of(repo_after) if repo_after is not None else None

        issue_link = self._current_issue_link(story, target_after)
        repo_before = self._find_linked_repo(issue_link) if issue_link is not None else None
        target_before = RepoTarget.of(repo_before) if repo_before is not None else None

        transition = plan_transition(target_before, target_after)
        logger.info(f"Exporting story {story.id}: {transition.value}")
        self._report(progress, 10)

        if transition is Transition.CREATE:
            self._create(story, repo_after, user, options)
        elif transition is Transition.UPDATE:
            self._update(story, repo_after, user, options, issue_link)
        elif transition is Transition.MOVE:
            self._move(story, repo_before, repo_after, user, options, issue_link)
        elif transition is Transition.CREATE_THEN_REMOVE:
            self._create(story, repo_after, user, options)
            self._report(progress, 50)
            self._remove(story, issue_link, user)
        elif transition is Transition.REMOVE:
            self._remove(story, issue_link, user)
        self._report(progress, 80)

        # Issues left behind on other servers by an interrupted create-then-remove
        keep_server = target_after.server_id if target_after is not None and target_after.has_tracker else None
        for link in self._issue_links(story):
            if link.server_id != keep_server:
                logger.info(f"Removing stale issue of story {story.id} on server {link.server_id}")
                self._remove(story, link, user)

        repo = repo_after or repo_before
        self.db.add(
            SyncLog(
                repo_id=repo.id if repo is not None else None,
                story_id=story.id,
                task_id=getattr(task, "id", None),
                status=SyncStatus.SUCCESS,
                direction=SyncDirection.EXPORT,
                message=f"Story {story.id}: {transition.value}",
            )
        )
        self.db.commit()
        return {"story_id": story.id, "transition": transition.value}

    # --- transitions -------------------------------------------------------

    def _create(self, story: Story, repo: Repo, user: User, options: ExportIssueOptions) -> None:
        server, project_id = self._repo_server(repo)
        gl_user_id = self._user_link_id(user, server)
        draft: Dict[str, Any] = {}
        self._export_issue_properties(story, server, draft, options, user)
        if not draft.get("title"):
            raise BadRequest("An issue needs a title")
        gl_issue = self.transport.post(server, f"/projects/{project_id}/issues", _issue_payload(draft), user_id=gl_user_id)
        logger.info(f"Created issue #{gl_issue.get('iid')} in project {project_id} for story {story.id}")
        self._save_issue_properties(story, server, repo, gl_issue)
        self._save_tracking_reaction(story, server, user)

    def _update(self, story: Story, repo: Repo, user: User, options: ExportIssueOptions, issue_link: ExternalLink) -> None:
        server, project_id = self._repo_server(repo)
        gl_user_id = self._user_link_id(user, server)
        number = issue_link.keys.issue.number
        gl_issue = self.transport.fetch(server, f"/projects/{project_id}/issues/{number}")
        gl_issue = self._push_changes(story, server, project_id, gl_issue, options, user, gl_user_id)
        self._save_issue_properties(story, server, repo, gl_issue)

    def _move(
        self,
        story: Story,
        repo_before: Repo,
        repo_after: Repo,
        user: User,
        options: ExportIssueOptions,
        issue_link: ExternalLink,
    ) -> None:
        server, to_project_id = self._repo_server(repo_after)
        gl_user_id = self._user_link_id(user, server)
        from_project_id = issue_link.keys.project.id
        number = issue_link.keys.issue.number
        gl_issue = self.transport.post(
            server,
            f"/projects/{from_project_id}/issues/{number}/move",
            {"to_project_id": to_project_id},
            user_id=gl_user_id,
        )
        logger.info(f"Moved issue #{number} of project {from_project_id} to project {to_project_id} (#{gl_issue.get('iid')})")
        gl_issue = self._push_changes(story, server, to_project_id, gl_issue, options, user, gl_user_id)
        self._save_issue_properties(story, server, repo_after, gl_issue)

        story_link = find_link(story, "gitlab", server.id)
        moved_keys = ObjectKeys(project=story_link.keys.project, issue=story_link.keys.issue)
        for reaction in self._issue_reactions(story):
            save_with_retry(
                self.db, reaction, lambda r: inherit_link(r, "gitlab", server.id, moved_keys)
            )
        self._save_tracking_reaction(story, server, user)

    def _remove(self, story: Story, issue_link: ExternalLink, user: User) -> None:
        server = self._find_server(issue_link.server_id)
        self._user_link_id(user, server)
        project_id = issue_link.keys.project.id
        number = issue_link.keys.issue.number
        try:
            self.transport.remove(server, f"/projects/{project_id}/issues/{number}")
            logger.info(f"Deleted issue #{number} of project {project_id}")
        except UpstreamFailure as e:
            if e.response_code != 404:
                raise
            logger.info(f"Issue #{number} of project {project_id} was already gone")

        def apply(story: Story) -> None:
            remove_link(story, "gitlab", server.id)
            clear_snapshot(story, "gitlab", server.id)
            if not self._issue_links(story):
                story.type = "post"
                story.etime = None
                for path in ISSUE_ONLY_PATHS:
                    delete_path(story, path)

        save_with_retry(self.db, story, apply)

        for reaction in self._issue_reactions(story):
            if get_links(reaction) and not find_link(reaction, "gitlab", server.id):
                continue

            def drop(reaction: Reaction) -> None:
                remove_link(reaction, "gitlab", server.id)
                clear_snapshot(reaction, "gitlab", server.id)
                if not get_links(reaction):
                    reaction.deleted = True

            save_with_retry(self.db, reaction, drop)

    # --- property copying --------------------------------------------------

    def _export_issue_properties(
        self, story: Story, server: Server, draft: Dict[str, Any], options: ExportIssueOptions, user: User
    ) -> bool:
        authors = self._find_authors(story)
        text = generate_issue_text(story, authors, user.id, self.address)
        title = options.title if options.title is not None else (story.details or {}).get("title") or ""
        changed = False
        changed |= export_property(story, draft, "gitlab", server.id, "title", title, "match-previous:title")
        changed |= export_property(story, draft, "gitlab", server.id, "description", text, "match-previous:description")
        changed |= export_property(
            story, draft, "gitlab", server.id, "confidential", not story.public, "match-previous:confidential"
        )
        changed |= export_property(story, draft, "gitlab", server.id, "labels", options.labels, "match-previous:labels")
        return changed

    def _push_changes(self, story, server, project_id, gl_issue, options, user, gl_user_id) -> Dict[str, Any]:
        draft = _issue_draft(gl_issue)
        if not self._export_issue_properties(story, server, draft, options, user):
            return gl_issue
        return self.transport.put(
            server, f"/projects/{project_id}/issues/{gl_issue['iid']}", _issue_payload(draft), user_id=gl_user_id
        )

    def _save_issue_properties(self, story: Story, server: Server, repo: Repo, gl_issue: Dict[str, Any]) -> None:
        repo_link = find_link(repo, "gitlab", server.id)

        def apply(story: Story) -> None:
            inherit_link(
                story,
                "gitlab",
                server.id,
                {
                    "project": repo_link.keys.project.model_dump(exclude_none=True),
                    "issue": {"id": gl_issue["id"], "number": gl_issue["iid"]},
                },
            )
            record_exported(story, "gitlab", server.id, _issue_draft(gl_issue))
            import_property(story, "gitlab", server.id, "type", "issue")
            import_issue_fields(story, server.id, gl_issue)
            import_property(story, "gitlab", server.id, "details.exported", True)
            story.etime = utcnow()

        save_with_retry(self.db, story, apply)

    def _save_tracking_reaction(self, story: Story, server: Server, user: User) -> Reaction:
        reaction = (
            self.db.query(Reaction)
            .filter(
                Reaction.story_id == story.id,
                Reaction.user_id == user.id,
                Reaction.type == "tracking",
                Reaction.deleted == False,  # noqa: E712
            )
            .order_by(Reaction.id)
            .first()
        )
        if reaction is None:
            reaction = Reaction(type="tracking", story_id=story.id, user_id=user.id, details={}, links=[], exchange=[])
        story_link = find_link(story, "gitlab", server.id)
        ptime = reaction.ptime or utcnow()

        def apply(reaction: Reaction) -> None:
            inherit_link(reaction, "gitlab", server.id, story_link.keys)
            import_property(reaction, "gitlab", server.id, "type", "tracking")
            import_property(reaction, "gitlab", server.id, "story_id", story.id)
            import_property(reaction, "gitlab", server.id, "user_id", user.id)
            import_property(reaction, "gitlab", server.id, "public", story.public)
            import_property(reaction, "gitlab", server.id, "published", True)
            import_property(reaction, "gitlab", server.id, "ptime", ptime)
            reaction.itime = utcnow()

        if reaction.id is None:
            apply(reaction)
            reaction = insert_reaction(self.db, reaction)
            self.db.commit()
            return reaction
        return save_with_retry(self.db, reaction, apply)

    # --- lookups -----------------------------------------------------------

    @staticmethod
    def _issue_links(story: Story) -> List[ExternalLink]:
        return [link for link in find_links(story, "gitlab") if link.keys.issue is not None]

    def _current_issue_link(self, story: Story, target_after: Optional[RepoTarget]) -> Optional[ExternalLink]:
        links = self._issue_links(story)
        if target_after is not None:
            for link in links:
                if link.server_id == target_after.server_id:
                    return link
        return links[0] if links else None

    def _issue_reactions(self, story: Story) -> List[Reaction]:
        return (
            self.db.query(Reaction)
            .filter(
                Reaction.story_id == story.id,
                Reaction.type.in_(ISSUE_REACTION_TYPES),
                Reaction.deleted == False,  # noqa: E712
            )
            .order_by(Reaction.id)
            .all()
        )

    def _find_story(self, story_id: int) -> Story:
        story = self.db.query(Story).filter(Story.id == story_id, Story.deleted == False).first()  # noqa: E712
        if story is None:
            raise NotFound("Story not found")
        return story

    def _find_user(self, user_id: Optional[int]) -> User:
        user = self.db.query(User).filter(User.id == user_id, User.deleted == False).first()  # noqa: E712
        if user is None:
            raise NotFound("User not found")
        return user

    def _find_authors(self, story: Story) -> List[User]:
        ids = list(story.user_ids or [])
        if not ids:
            return []
        users = {u.id: u for u in self.db.query(User).filter(User.id.in_(ids), User.deleted == False)}  # noqa: E712
        return [users[i] for i in ids if i in users]

    def _find_repo(self, repo_id: int) -> Repo:
        repo = self.db.query(Repo).filter(Repo.id == repo_id, Repo.deleted == False).first()  # noqa: E712
        if repo is None:
            raise NotFound("Repo not found")
        return repo

    def _find_linked_repo(self, issue_link: ExternalLink) -> Repo:
        if issue_link.keys.project is None:
            raise NotFound("Repo not found")
        criteria = ExternalLink(
            type="gitlab",
            server_id=issue_link.server_id,
            keys=ObjectKeys(project=ObjectRef(id=issue_link.keys.project.id)),
        )
        repo = find_one_by_link(self.db, Repo, criteria)
        if repo is None:
            raise NotFound("Repo not found")
        return repo

    def _find_server(self, server_id: int) -> Server:
        server = self.db.query(Server).filter(Server.id == server_id, Server.deleted == False).first()  # noqa: E712
        if server is None:
            raise NotFound("Server not found")
        if server.disabled:
            raise Forbidden("Server is disabled")
        return server

    def _repo_server(self, repo: Repo):
        link = find_link(repo, "gitlab")
        if link is None or link.keys.project is None:
            raise BadRequest(f"Repo {repo.id} has no issue tracker")
        return self._find_server(link.server_id), link.keys.project.id

    @staticmethod
    def _user_link_id(user: User, server: Server):
        link = find_link(user, "gitlab", server.id)
        if link is None or link.keys.user is None:
            raise Forbidden("User is not associated with a GitLab account")
        return link.keys.user.id

    @staticmethod
    def _report(progress, percent: int) -> None:
        if progress is not None:
            progress.report(percent)
