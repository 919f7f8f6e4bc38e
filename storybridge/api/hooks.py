"""Webhook endpoint GitLab posts repo activity to"""
import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from storybridge.errors import SyncError
from storybridge.models import Server
from storybridge.models.base import get_db
from storybridge.services.event_importer import HookImporter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/hooks", tags=["hooks"])


@router.post("/{server_id}/{repo_id}")
def receive_hook(
    server_id: int,
    repo_id: int,
    payload: Dict[str, Any] = Body(...),
    x_gitlab_token: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    """Import one webhook payload"""
    server = db.query(Server).filter(Server.id == server_id, Server.deleted == False).first()  # noqa: E712
    if not server:
        raise HTTPException(status_code=404, detail="Server not found")
    if server.hook_token and not hmac.compare_digest(server.hook_token, x_gitlab_token or ""):
        raise HTTPException(status_code=403, detail="Invalid hook token")

    try:
        result = HookImporter(db).process(server_id, repo_id, payload)
    except SyncError as e:
        db.rollback()
        logger.error(f"Hook for repo {repo_id} failed: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {
        "status": "imported" if result is not None else "ignored",
        "id": getattr(result, "id", None),
    }
