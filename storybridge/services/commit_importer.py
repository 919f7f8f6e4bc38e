"""Import of commits"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from storybridge.errors import NotFound
from storybridge.models import Commit
from storybridge.models.base import utcnow
from storybridge.services.note_importer import title_hash
from storybridge.services.transport import Transport
from storybridge.sync.links import extend_link, find_link, find_one_by_link, inherit_link
from storybridge.sync.merge import import_property

logger = logging.getLogger(__name__)


def file_changes(diffs: List[Dict[str, Any]]) -> Dict[str, list]:
    files: Dict[str, list] = {"added": [], "deleted": [], "modified": [], "renamed": []}
    for diff in diffs or []:
        if diff.get("new_file"):
            files["added"].append(diff.get("new_path"))
        elif diff.get("deleted_file"):
            files["deleted"].append(diff.get("old_path"))
        elif diff.get("renamed_file"):
            files["renamed"].append({"before": diff.get("old_path"), "after": diff.get("new_path")})
        else:
            files["modified"].append(diff.get("new_path"))
    return files


def parent_ids(commit: Commit) -> List[str]:
    ids = list((commit.details or {}).get("parent_ids") or [])
    link = find_link(commit, "gitlab")
    if link is not None and link.keys.commit is not None and link.keys.commit.id in ids:
        ids.remove(link.keys.commit.id)
    return ids


class CommitImporter:
    def __init__(self, db: Session, transport: Optional[Transport] = None):
        self.db = db
        self.transport = transport or Transport()

    def import_commit(self, server, repo, branch: Optional[str], sha: str) -> Commit:
        """Commit row for ``sha``; fetched from the server the first time only."""
        repo_link = find_link(repo, "gitlab", server.id)
        if repo_link is None or repo_link.keys.project is None:
            raise NotFound(f"Repo {repo.id} is not linked to server {server.id}")
        commit = find_one_by_link(self.db, Commit, extend_link(repo, "gitlab", server.id, {"commit": {"id": sha}}))
        if commit is not None:
            return commit

        project_id = repo_link.keys.project.id
        gl_commit = self.transport.fetch(server, f"/projects/{project_id}/repository/commits/{sha}", {"stats": True})
        diffs = self.transport.fetch_all(server, f"/projects/{project_id}/repository/commits/{sha}/diff")
        stats = gl_commit.get("stats") or {}

        commit = Commit(title_hash=title_hash(gl_commit.get("title")), initial_branch=branch, details={}, links=[], exchange=[])
        inherit_link(
            commit,
            "gitlab",
            server.id,
            {"project": repo_link.keys.project.model_dump(exclude_none=True), "commit": {"id": sha}},
        )
        import_property(commit, "gitlab", server.id, "details.title", gl_commit.get("title"))
        import_property(commit, "gitlab", server.id, "details.message", gl_commit.get("message"))
        import_property(
            commit,
            "gitlab",
            server.id,
            "details.author",
            {"name": gl_commit.get("author_name"), "email": gl_commit.get("author_email")},
        )
        import_property(
            commit,
            "gitlab",
            server.id,
            "details.lines",
            {"added": stats.get("additions", 0), "deleted": stats.get("deletions", 0)},
        )
        import_property(commit, "gitlab", server.id, "details.files", file_changes(diffs))
        import_property(commit, "gitlab", server.id, "details.parent_ids", gl_commit.get("parent_ids") or [])
        commit.itime = utcnow()
        self.db.add(commit)
        self.db.commit()
        logger.info(f"Imported commit {sha[:8]} of repo {repo.id}")
        return commit
