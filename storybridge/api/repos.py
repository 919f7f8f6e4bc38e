"""Repo endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storybridge.config import settings
from storybridge.models import Repo, Server
from storybridge.models.base import get_db
from storybridge.scheduler import scheduler
from storybridge.sync.links import ExternalLink, ObjectKeys, ObjectRef, find_link, find_one_by_link, inherit_link

router = APIRouter(prefix="/api/repos", tags=["repos"])


class RepoCreate(BaseModel):
    name: str
    server_id: int
    project_id: int
    web_url: Optional[str] = None
    issues_enabled: bool = True


class RepoResponse(BaseModel):
    id: int
    name: str
    server_id: Optional[int] = None
    project_id: Optional[int] = None
    web_url: Optional[str] = None
    issues_enabled: bool
    last_event_id: Optional[int] = None


def _to_response(repo: Repo) -> RepoResponse:
    link = find_link(repo, "gitlab")
    details = repo.details or {}
    return RepoResponse(
        id=repo.id,
        name=repo.name,
        server_id=link.server_id if link else None,
        project_id=link.keys.project.id if link and link.keys.project else None,
        web_url=details.get("web_url"),
        issues_enabled=repo.issues_enabled,
        last_event_id=details.get("last_event_id"),
    )


@router.get("/", response_model=List[RepoResponse])
def list_repos(db: Session = Depends(get_db)):
    """List all repos"""
    repos = db.query(Repo).filter(Repo.deleted == False).order_by(Repo.id).all()  # noqa: E712
    return [_to_response(r) for r in repos]


@router.post("/", response_model=RepoResponse)
def create_repo(repo: RepoCreate, db: Session = Depends(get_db)):
    """Register a GitLab project as a repo"""
    server = db.query(Server).filter(Server.id == repo.server_id, Server.deleted == False).first()  # noqa: E712
    if not server:
        raise HTTPException(status_code=404, detail="Server not found")
    criteria = ExternalLink(
        type="gitlab", server_id=server.id, keys=ObjectKeys(project=ObjectRef(id=repo.project_id))
    )
    if find_one_by_link(db, Repo, criteria) is not None:
        raise HTTPException(status_code=400, detail="Project is already registered")

    db_repo = Repo(
        name=repo.name,
        details={"web_url": repo.web_url, "issues_enabled": repo.issues_enabled},
        links=[],
        exchange=[],
    )
    inherit_link(db_repo, "gitlab", server.id, {"project": {"id": repo.project_id}})
    db.add(db_repo)
    db.commit()
    db.refresh(db_repo)

    if settings.event_polling_enabled:
        scheduler.schedule_repo(db_repo.id, settings.event_poll_interval_minutes)
    return _to_response(db_repo)


@router.get("/{repo_id}", response_model=RepoResponse)
def get_repo(repo_id: int, db: Session = Depends(get_db)):
    """Get a specific repo"""
    repo = db.query(Repo).filter(Repo.id == repo_id, Repo.deleted == False).first()  # noqa: E712
    if not repo:
        raise HTTPException(status_code=404, detail="Repo not found")
    return _to_response(repo)
