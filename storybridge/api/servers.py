"""External server management endpoints"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storybridge.models import Server
from storybridge.models.base import get_db

router = APIRouter(prefix="/api/servers", tags=["servers"])


class ServerCreate(BaseModel):
    name: str
    type: str = "gitlab"
    url: str
    access_token: str
    token_type: str = "private"
    hook_token: Optional[str] = None
    disabled: bool = False
    settings: Dict[str, Any] = {}


class ServerResponse(BaseModel):
    id: int
    name: str
    type: str
    url: str
    token_type: str
    disabled: bool
    settings: Dict[str, Any] = {}
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def _get_server(db: Session, server_id: int) -> Server:
    server = db.query(Server).filter(Server.id == server_id, Server.deleted == False).first()  # noqa: E712
    if not server:
        raise HTTPException(status_code=404, detail="Server not found")
    return server


@router.get("/", response_model=List[ServerResponse])
def list_servers(db: Session = Depends(get_db)):
    """List all servers"""
    return db.query(Server).filter(Server.deleted == False).order_by(Server.id).all()  # noqa: E712


@router.post("/", response_model=ServerResponse)
def create_server(server: ServerCreate, db: Session = Depends(get_db)):
    """Register a new server"""
    existing = db.query(Server).filter(Server.name == server.name).first()
    if existing:
        raise HTTPException(status_code=400, detail="Server name already exists")

    db_server = Server(**server.model_dump())
    db.add(db_server)
    db.commit()
    db.refresh(db_server)
    return db_server


@router.get("/{server_id}", response_model=ServerResponse)
def get_server(server_id: int, db: Session = Depends(get_db)):
    """Get a specific server"""
    return _get_server(db, server_id)


@router.put("/{server_id}", response_model=ServerResponse)
def update_server(server_id: int, server: ServerCreate, db: Session = Depends(get_db)):
    """Update a server"""
    db_server = _get_server(db, server_id)
    clash = db.query(Server).filter(Server.name == server.name, Server.id != server_id).first()
    if clash:
        raise HTTPException(status_code=400, detail="Server name already exists")

    for key, value in server.model_dump().items():
        setattr(db_server, key, value)

    db.commit()
    db.refresh(db_server)
    return db_server


@router.delete("/{server_id}")
def delete_server(server_id: int, db: Session = Depends(get_db)):
    """Delete a server; rows linked to it keep their links"""
    db_server = _get_server(db, server_id)
    db_server.deleted = True
    db.commit()
    return {"message": "Server deleted successfully"}
