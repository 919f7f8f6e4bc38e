"""Reconstruction of pushes as stories"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from storybridge.models import Commit, Story
from storybridge.models.base import utcnow
from storybridge.services.commit_importer import CommitImporter, parent_ids
from storybridge.services.transport import Transport
from storybridge.services.user_importer import UserImporter
from storybridge.sync.links import extend_link, find_by_link, find_link, inherit_link
from storybridge.sync.merge import import_property

logger = logging.getLogger(__name__)

NULL_SHA = "0" * 40


def commit_chain(commits: Dict[str, Commit], head_id: str) -> List[Commit]:
    """Linear history from the head, following first parents."""
    chain = []
    sha = head_id
    while sha and sha in commits and commits[sha] not in chain:
        commit = commits[sha]
        chain.append(commit)
        parents = parent_ids(commit)
        sha = parents[0] if parents else None
    return chain


def merge_line_changes(chain: List[Commit]) -> Dict[str, int]:
    lines = {"added": 0, "deleted": 0}
    for commit in chain:
        cl = (commit.details or {}).get("lines") or {}
        lines["added"] += cl.get("added", 0)
        lines["deleted"] += cl.get("deleted", 0)
    return lines


def merge_file_changes(chain: List[Commit]) -> Dict[str, list]:
    """Net file changes of a push; ``chain`` runs from head to tail."""
    pf: Dict[str, list] = {"added": [], "deleted": [], "modified": [], "renamed": []}
    for commit in reversed(chain):
        cf = (commit.details or {}).get("files") or {}
        for path in cf.get("added", []):
            if path not in pf["added"]:
                pf["added"].append(path)
        for path in cf.get("deleted", []):
            # Added and deleted within the same push
            if path in pf["added"]:
                pf["added"].remove(path)
            elif path not in pf["deleted"]:
                pf["deleted"].append(path)
        for rename in cf.get("renamed", []):
            if rename["before"] in pf["added"]:
                pf["added"].remove(rename["before"])
                pf["added"].append(rename["after"])
            else:
                earlier = [r for r in pf["renamed"] if r["after"] == rename["before"]]
                for r in earlier:
                    pf["renamed"].remove(r)
                before = earlier[0]["before"] if earlier else rename["before"]
                pf["renamed"].append({"before": before, "after": rename["after"]})
        for path in cf.get("modified", []):
            if path not in pf["added"] and path not in pf["modified"]:
                pf["modified"].append(path)
    return pf


class PushImporter:
    def __init__(
        self,
        db: Session,
        transport: Optional[Transport] = None,
        user_importer: Optional[UserImporter] = None,
        commit_importer: Optional[CommitImporter] = None,
    ):
        self.db = db
        self.transport = transport or Transport()
        self.user_importer = user_importer or UserImporter(db, self.transport)
        self.commit_importer = commit_importer or CommitImporter(db, self.transport)

    def import_push(
        self,
        server,
        repo,
        *,
        branch: str,
        head_id: Optional[str],
        tail_id: Optional[str],
        count: int,
        author_id,
        created_at: Optional[datetime] = None,
    ) -> Optional[Story]:
        if not head_id or head_id == NULL_SHA:
            logger.debug(f"Ignoring removal of branch '{branch}'")
            return None
        if tail_id == NULL_SHA:
            tail_id = None

        criteria = extend_link(repo, "gitlab", server.id, {"commit": {"id": head_id}})
        for story in find_by_link(self.db, Story, criteria):
            if story.type in ("push", "branch") and ((story.details or {}).get("commit_ids") or [None])[0] == head_id:
                return story

        commits = self._import_commits(server, repo, branch, head_id, tail_id, max(count, 1))
        chain = commit_chain(commits, head_id)
        from_branches = []
        for commit in commits.values():
            if commit.initial_branch and commit.initial_branch != branch and commit.initial_branch not in from_branches:
                from_branches.append(commit.initial_branch)
        commit_ids = list(commits.keys())

        author = self.user_importer.find_or_import(server, author_id)
        repo_link = find_link(repo, "gitlab", server.id)
        story = Story(
            type="push" if tail_id else "branch",
            tags=[],
            user_ids=[author.id],
            published=True,
            ready=True,
            public=True,
            ptime=created_at or utcnow(),
            details={},
            links=[],
            exchange=[],
        )
        inherit_link(
            story,
            "gitlab",
            server.id,
            {"project": repo_link.keys.project.model_dump(exclude_none=True), "commit": {"ids": commit_ids}},
        )
        import_property(story, "gitlab", server.id, "details.branch", branch)
        import_property(story, "gitlab", server.id, "details.from_branches", from_branches)
        import_property(story, "gitlab", server.id, "details.commit_ids", commit_ids)
        import_property(story, "gitlab", server.id, "details.lines", merge_line_changes(chain))
        import_property(story, "gitlab", server.id, "details.files", merge_file_changes(chain))
        story.itime = utcnow()
        self.db.add(story)
        self.db.commit()
        logger.info(f"Imported {story.type} of {len(commit_ids)} commit(s) to '{branch}' in repo {repo.id}")
        return story

    def _import_commits(self, server, repo, branch, head_id, tail_id, count) -> Dict[str, Commit]:
        """Breadth-first walk back from the head until ``count`` commits are in."""
        queue = [head_id]
        commits: Dict[str, Commit] = {}
        while queue and len(commits) < count:
            sha = queue.pop(0)
            if sha in commits or sha == tail_id:
                continue
            commit = self.commit_importer.import_commit(server, repo, branch, sha)
            commits[sha] = commit
            queue.extend(parent_ids(commit))
        return commits
