"""Task endpoints: start exports and imports, poll their progress"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storybridge.errors import NotFound, SyncError
from storybridge.models.base import get_db
from storybridge.scheduler import EXPORT_ISSUE, IMPORT_EVENTS, scheduler
from storybridge.services.tasks import TaskService

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


class ExportIssueRequest(BaseModel):
    story_id: int
    # None removes the story's issue
    repo_id: Optional[int] = None
    title: Optional[str] = None
    labels: List[str] = []
    user_id: Optional[int] = None
    token: Optional[str] = None


class ImportEventsRequest(BaseModel):
    repo_id: int
    user_id: Optional[int] = None
    token: Optional[str] = None


class TaskResponse(BaseModel):
    id: int
    token: Optional[str] = None
    action: str
    completion: int
    failed: bool
    seen: bool
    details: Dict[str, Any] = {}

    class Config:
        from_attributes = True


def _start(db: Session, action: str, options: Dict[str, Any], user_id, token):
    service = TaskService(db)
    running = None
    if token:
        try:
            running = service.find_by_token(token)
        except NotFound:
            running = None
    task = service.create(action, options, user_id=user_id, token=token)
    # A resumed task already has a job
    if running is None or running.id != task.id:
        scheduler.submit_task(task.id)
    db.refresh(task)
    return task


@router.post("/export-issue", response_model=TaskResponse)
def export_issue(request: ExportIssueRequest, db: Session = Depends(get_db)):
    """Create, update, move or remove the issue of a story"""
    options = request.model_dump(exclude={"token"})
    return _start(db, EXPORT_ISSUE, options, request.user_id, request.token)


@router.post("/import-events", response_model=TaskResponse)
def import_events(request: ImportEventsRequest, db: Session = Depends(get_db)):
    """Import a repo's new activity now"""
    options = {"repo_id": request.repo_id}
    return _start(db, IMPORT_EVENTS, options, request.user_id, request.token)


@router.get("/{token}", response_model=TaskResponse)
def get_task(token: str, db: Session = Depends(get_db)):
    """Poll a task by its token"""
    try:
        return TaskService(db).find_by_token(token)
    except SyncError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{token}/abort", response_model=TaskResponse)
def abort_task(token: str, db: Session = Depends(get_db)):
    """Stop a task; a running job notices at its next progress report"""
    try:
        return TaskService(db).abort(token)
    except SyncError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{token}/seen", response_model=TaskResponse)
def mark_task_seen(token: str, db: Session = Depends(get_db)):
    """Acknowledge a finished task"""
    try:
        return TaskService(db).mark_seen(token)
    except SyncError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
