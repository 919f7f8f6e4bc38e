"""Services"""

from storybridge.services.event_importer import HookImporter, RepoEventImporter
from storybridge.services.issue_exporter import IssueExporter
from storybridge.services.tasks import TaskRunner, TaskService
from storybridge.services.transport import Transport

__all__ = ["Transport", "IssueExporter", "RepoEventImporter", "HookImporter", "TaskService", "TaskRunner"]
