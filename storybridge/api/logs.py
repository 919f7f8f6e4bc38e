"""Sync log endpoints"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storybridge.models import SyncLog
from storybridge.models.base import get_db
from storybridge.models.sync_log import SyncDirection, SyncStatus

router = APIRouter(prefix="/api/logs", tags=["logs"])


class SyncLogResponse(BaseModel):
    id: int
    repo_id: Optional[int] = None
    story_id: Optional[int] = None
    task_id: Optional[int] = None
    status: SyncStatus
    direction: Optional[SyncDirection] = None
    message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("/", response_model=List[SyncLogResponse])
def list_sync_logs(
    limit: int = 100,
    repo_id: int = None,
    story_id: int = None,
    db: Session = Depends(get_db)
):
    """List sync logs, newest first"""
    query = db.query(SyncLog).order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
    if repo_id:
        query = query.filter(SyncLog.repo_id == repo_id)
    if story_id:
        query = query.filter(SyncLog.story_id == story_id)
    return query.limit(limit).all()
