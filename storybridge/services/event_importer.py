"""Periodic import of a repo's activity and webhook dispatch"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from storybridge.errors import BadRequest, Forbidden, NotFound, UpstreamFailure
from storybridge.models import Repo, Server, SyncLog
from storybridge.models.sync_log import SyncDirection, SyncStatus
from storybridge.services.commit_importer import CommitImporter
from storybridge.services.issue_importer import IssueImporter
from storybridge.services.note_importer import NoteImporter
from storybridge.services.push_importer import PushImporter
from storybridge.services.store import save_with_retry
from storybridge.services.timeutil import parse_gitlab_datetime
from storybridge.services.transport import Transport
from storybridge.services.user_importer import UserImporter
from storybridge.sync.links import find_link
from storybridge.sync.merge import import_property

logger = logging.getLogger(__name__)

NOTE_TARGET_TYPES = ("Note", "DiscussionNote", "DiffNote")


class RepoImporters:
    """The importers a repo's events are dispatched to, sharing one session and transport"""

    def __init__(self, db: Session, transport: Optional[Transport] = None):
        self.db = db
        self.transport = transport or Transport()
        self.users = UserImporter(db, self.transport)
        self.issues = IssueImporter(db, self.transport, self.users)
        self.notes = NoteImporter(db, self.transport, self.users)
        self.pushes = PushImporter(db, self.transport, self.users, CommitImporter(db, self.transport))

    def resolve(self, repo_id: int, server_id: Optional[int] = None):
        """Repo, its server and its project id; the repo must be linked to the server."""
        repo = self.db.query(Repo).filter(Repo.id == repo_id, Repo.deleted == False).first()  # noqa: E712
        if repo is None:
            raise NotFound("Repo not found")
        link = find_link(repo, "gitlab", server_id)
        if link is None or link.keys.project is None:
            raise BadRequest(f"Repo {repo_id} is not linked to a GitLab project")
        server = self.db.query(Server).filter(Server.id == link.server_id, Server.deleted == False).first()  # noqa: E712
        if server is None:
            raise NotFound("Server not found")
        if server.disabled:
            raise Forbidden("Server is disabled")
        return repo, server, link.keys.project.id


class RepoEventImporter(RepoImporters):
    def import_events(self, repo_id: int, progress=None, task_id: Optional[int] = None) -> Dict[str, int]:
        """Import every event newer than the last one seen; returns counters."""
        repo, server, project_id = self.resolve(repo_id)
        last_event_id = (repo.details or {}).get("last_event_id") or 0
        events = self.transport.fetch_all(server, f"/projects/{project_id}/events", {"sort": "asc"})
        events = sorted((e for e in events if e.get("id", 0) > last_event_id), key=lambda e: e["id"])
        logger.info(f"Importing {len(events)} event(s) of repo {repo.id}")

        stats = {"events": len(events), "imported": 0, "skipped": 0}
        for index, event in enumerate(events, start=1):
            try:
                result = self.import_event(server, repo, project_id, event)
            except (Forbidden, NotFound) as e:
                # Refused authors and targets gone from the server are passed over
                self.db.rollback()
                logger.warning(f"Skipping event {event['id']} of repo {repo.id}: {e.message}")
                result = None
            except UpstreamFailure as e:
                if e.response_code != 404:
                    raise
                self.db.rollback()
                logger.warning(f"Skipping event {event['id']} of repo {repo.id}, target no longer exists: {e.message}")
                result = None
            if result is None:
                stats["skipped"] += 1
            else:
                stats["imported"] += 1
            save_with_retry(
                self.db,
                repo,
                lambda r, event_id=event["id"]: import_property(r, "gitlab", server.id, "details.last_event_id", event_id),
            )
            if progress is not None:
                progress.report(int(index * 99 / len(events)))

        self.db.add(
            SyncLog(
                repo_id=repo.id,
                task_id=task_id,
                status=SyncStatus.SUCCESS if events else SyncStatus.SKIPPED,
                direction=SyncDirection.IMPORT,
                message=f"Imported {stats['imported']} of {stats['events']} event(s)",
            )
        )
        self.db.commit()
        return stats

    def import_event(self, server, repo, project_id, event: Dict[str, Any]):
        target_type = event.get("target_type")
        if target_type in NOTE_TARGET_TYPES and event.get("note"):
            return self.notes.import_event(server, repo, event)
        if target_type == "Issue":
            gl_issue = self.transport.fetch(server, f"/projects/{project_id}/issues/{event['target_iid']}")
            return self.issues.import_issue(server, repo, gl_issue, "issue")
        if target_type == "MergeRequest":
            gl_mr = self.transport.fetch(server, f"/projects/{project_id}/merge_requests/{event['target_iid']}")
            return self.issues.import_issue(server, repo, gl_mr, "merge_request")
        push = event.get("push_data")
        if push and push.get("ref_type") == "branch":
            return self.pushes.import_push(
                server,
                repo,
                branch=push.get("ref"),
                head_id=push.get("commit_to"),
                tail_id=push.get("commit_from"),
                count=push.get("commit_count") or 0,
                author_id=event.get("author_id"),
                created_at=parse_gitlab_datetime(event.get("created_at")),
            )
        logger.debug(f"Ignoring event {event.get('id')} ({event.get('action_name')})")
        return None


class HookImporter(RepoImporters):
    """Handles webhook payloads GitLab posts for a repo"""

    def process(self, server_id: int, repo_id: int, payload: Dict[str, Any]):
        repo, server, project_id = self.resolve(repo_id, server_id)
        kind = payload.get("object_kind")
        attributes = payload.get("object_attributes") or {}
        if kind == "note":
            return self.notes.import_event(server, repo, self._note_event(payload), payload)
        if kind in ("issue", "merge_request"):
            gl_issue = {
                "id": attributes.get("id"),
                "iid": attributes.get("iid"),
                "title": attributes.get("title"),
                "description": attributes.get("description"),
                "state": attributes.get("state"),
                "confidential": attributes.get("confidential", False),
                "labels": payload.get("labels") or attributes.get("labels") or [],
                "author_id": attributes.get("author_id"),
                "created_at": attributes.get("created_at"),
            }
            return self.issues.import_issue(server, repo, gl_issue, kind)
        if kind == "push":
            ref = payload.get("ref") or ""
            if not ref.startswith("refs/heads/"):
                return None
            return self.pushes.import_push(
                server,
                repo,
                branch=ref[len("refs/heads/"):],
                head_id=payload.get("after"),
                tail_id=payload.get("before"),
                count=payload.get("total_commits_count") or 0,
                author_id=payload.get("user_id"),
            )
        if kind == "emoji":
            return self.notes.import_award(server, repo, attributes, payload.get("user") or {})
        logger.debug(f"Ignoring '{kind}' hook for repo {repo.id}")
        return None

    @staticmethod
    def _note_event(payload: Dict[str, Any]) -> Dict[str, Any]:
        """Reshape a note hook into the activity event form the note importer reads."""
        attributes = payload.get("object_attributes") or {}
        noteable = payload.get("issue") or payload.get("merge_request") or {}
        commit = payload.get("commit") or {}
        return {
            "author_id": attributes.get("author_id") or (payload.get("user") or {}).get("id"),
            "target_title": (commit.get("title") or (commit.get("message") or "").split("\n")[0]) if commit else None,
            "note": {
                "id": attributes.get("id"),
                "body": attributes.get("note"),
                "noteable_type": attributes.get("noteable_type"),
                "noteable_id": noteable.get("id") or attributes.get("noteable_id"),
                "created_at": attributes.get("created_at"),
            },
        }
