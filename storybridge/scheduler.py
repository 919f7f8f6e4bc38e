"""Background scheduler for repo polling and task jobs"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from storybridge.config import settings
from storybridge.models import Repo
from storybridge.models.base import SessionLocal
from storybridge.services.event_importer import RepoEventImporter
from storybridge.services.issue_exporter import IssueExporter
from storybridge.services.tasks import TaskRunner
from storybridge.sync.links import find_link

logger = logging.getLogger(__name__)

EXPORT_ISSUE = "export-issue"
IMPORT_EVENTS = "import-events"


def export_issue_handler(db, task, progress):
    return IssueExporter(db).export_story(task, progress)


def import_events_handler(db, task, progress):
    return RepoEventImporter(db).import_events((task.options or {}).get("repo_id"), progress, task_id=task.id)


class ImportScheduler:
    """Polls linked repos for new activity and runs queued tasks"""

    def __init__(self):
        self.scheduler = BackgroundScheduler()
        # Best-effort in-memory index of jobs we created.
        # APScheduler itself is the source of truth (see get_job()).
        self.jobs = {}
        self.tasks = TaskRunner(self.scheduler)
        self.tasks.register(EXPORT_ISSUE, export_issue_handler)
        self.tasks.register(IMPORT_EVENTS, import_events_handler)

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Import scheduler started")

        if settings.event_polling_enabled:
            self.schedule_all_repos()

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown()
        logger.info("Import scheduler stopped")

    def schedule_all_repos(self):
        """Schedule event polling for every repo linked to a GitLab project"""
        db = SessionLocal()
        try:
            repos = db.query(Repo).filter(Repo.deleted == False).all()  # noqa: E712
            linked_ids = {r.id for r in repos if find_link(r, "gitlab") is not None}

            # If this is ever re-run, reconcile existing jobs too.
            for job_id in list(self.jobs.keys()):
                repo_id = int(job_id.split("import_repo_", 1)[1])
                if repo_id not in linked_ids:
                    self.unschedule_repo(repo_id)

            for repo_id in sorted(linked_ids):
                self.schedule_repo(repo_id, settings.event_poll_interval_minutes)
        finally:
            db.close()

    def schedule_repo(self, repo_id: int, interval_minutes: int):
        """Schedule event polling for a specific repo"""
        job_id = f"import_repo_{repo_id}"

        # Remove existing job if it exists (don't rely solely on self.jobs)
        existing = self.scheduler.get_job(job_id)
        if existing is not None:
            self.scheduler.remove_job(job_id)

        self.scheduler.add_job(
            func=self._import_repo_job,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=job_id,
            args=[repo_id],
            replace_existing=True,
        )
        self.jobs[job_id] = True
        logger.info(f"Scheduled event import for repo {repo_id} every {interval_minutes} minutes")

    def unschedule_repo(self, repo_id: int):
        """Remove the polling job of a repo"""
        job_id = f"import_repo_{repo_id}"
        existing = self.scheduler.get_job(job_id)
        if existing is not None:
            self.scheduler.remove_job(job_id)
        self.jobs.pop(job_id, None)
        logger.info(f"Unscheduled event import for repo {repo_id}")

    def submit_task(self, task_id: int):
        self.tasks.submit(task_id)

    def _import_repo_job(self, repo_id: int):
        """Job function to import a repo's new events"""
        db = SessionLocal()
        try:
            logger.info(f"Running scheduled event import for repo {repo_id}")
            result = RepoEventImporter(db).import_events(repo_id)
            logger.info(f"Scheduled event import completed for repo {repo_id}: {result}")
        except Exception as e:
            db.rollback()
            logger.error(f"Scheduled event import failed for repo {repo_id}: {e}")
        finally:
            db.close()


# Global scheduler instance
scheduler = ImportScheduler()
