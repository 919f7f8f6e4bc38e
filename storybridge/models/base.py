"""Database base configuration"""
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from storybridge.config import settings

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime (consistent with GitLab parsing)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _ensure_task_token_index(bind):
    """
    Live tasks must have unique tokens (that is what clients poll by).
    A partial unique index expresses that on both SQLite and PostgreSQL.
    """
    with bind.begin() as conn:
        conn.exec_driver_sql(
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_tasks_live_token "
            "ON tasks(token) WHERE token IS NOT NULL AND deleted = false"
        )


def init_db(bind=None):
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    import storybridge.models  # noqa: F401  (import for side-effects)

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _ensure_task_token_index(bind)
