"""User endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storybridge.errors import SyncError
from storybridge.models import Server, User
from storybridge.models.base import get_db
from storybridge.models.user import USER_TYPES
from storybridge.services.user_importer import UserImporter
from storybridge.sync.links import ExternalLink, ObjectKeys, ObjectRef, find_one_by_link, inherit_link

router = APIRouter(prefix="/api/users", tags=["users"])


class UserCreate(BaseModel):
    username: str
    email: Optional[str] = None
    type: str = "regular"
    name: Optional[str] = None


class UserLink(BaseModel):
    server_id: int
    external_user_id: int


class UserResponse(BaseModel):
    id: int
    type: str
    username: Optional[str] = None
    email: Optional[str] = None
    disabled: bool
    links: list = []

    class Config:
        from_attributes = True


def _get_server(db: Session, server_id: int) -> Server:
    server = db.query(Server).filter(Server.id == server_id, Server.deleted == False).first()  # noqa: E712
    if not server:
        raise HTTPException(status_code=404, detail="Server not found")
    return server


@router.get("/", response_model=List[UserResponse])
def list_users(db: Session = Depends(get_db)):
    """List all users"""
    return db.query(User).filter(User.deleted == False).order_by(User.id).all()  # noqa: E712


@router.post("/", response_model=UserResponse)
def create_user(user: UserCreate, db: Session = Depends(get_db)):
    """Create a local user"""
    if user.type not in USER_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown user type '{user.type}'")
    existing = db.query(User).filter(User.username == user.username, User.deleted == False).first()  # noqa: E712
    if existing:
        raise HTTPException(status_code=400, detail="Username already taken")

    db_user = User(
        type=user.type,
        username=user.username,
        email=user.email,
        details={"name": user.name} if user.name else {},
        links=[],
        exchange=[],
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


@router.post("/import", response_model=UserResponse)
def import_user(link: UserLink, db: Session = Depends(get_db)):
    """Import (or refresh) the local user behind an external account"""
    server = _get_server(db, link.server_id)
    try:
        return UserImporter(db).find_or_import(server, link.external_user_id)
    except SyncError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{user_id}/links", response_model=UserResponse)
def link_user(user_id: int, link: UserLink, db: Session = Depends(get_db)):
    """Link a local user to an account on an external server"""
    db_user = db.query(User).filter(User.id == user_id, User.deleted == False).first()  # noqa: E712
    if not db_user:
        raise HTTPException(status_code=404, detail="User not found")
    server = _get_server(db, link.server_id)

    criteria = ExternalLink(
        type=server.type, server_id=server.id, keys=ObjectKeys(user=ObjectRef(id=link.external_user_id))
    )
    holder = find_one_by_link(db, User, criteria)
    if holder is not None and holder.id != db_user.id:
        raise HTTPException(status_code=400, detail=f"Account is already linked to user {holder.id}")

    inherit_link(db_user, server.type, server.id, {"user": {"id": link.external_user_id}})
    db.commit()
    db.refresh(db_user)
    return db_user


@router.get("/{user_id}", response_model=UserResponse)
def get_user(user_id: int, db: Session = Depends(get_db)):
    """Get a specific user"""
    db_user = db.query(User).filter(User.id == user_id, User.deleted == False).first()  # noqa: E712
    if not db_user:
        raise HTTPException(status_code=404, detail="User not found")
    return db_user
