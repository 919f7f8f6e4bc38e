"""Database models"""

from storybridge.models.base import Base
from storybridge.models.commit import Commit
from storybridge.models.reaction import Reaction
from storybridge.models.repo import Repo
from storybridge.models.server import Server
from storybridge.models.story import Story
from storybridge.models.sync_log import SyncLog
from storybridge.models.task import Task
from storybridge.models.user import User

__all__ = [
    "Base",
    "Server",
    "Repo",
    "User",
    "Story",
    "Reaction",
    "Commit",
    "Task",
    "SyncLog",
]
