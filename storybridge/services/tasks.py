"""Asynchronous tasks: persistence, progress and execution.

A task moves from pending through 0-99% to either completed (100%) or
failed. Terminal writes are conditional UPDATEs so exactly one of
``complete`` / ``fail`` / ``abort`` wins; afterwards only ``seen`` changes.
Clients poll by token.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storybridge.errors import NotFound, SyncError, TaskAborted
from storybridge.models import Repo, SyncLog, Task
from storybridge.models.base import SessionLocal, utcnow
from storybridge.models.sync_log import SyncStatus

logger = logging.getLogger(__name__)


def task_status(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "token": task.token,
        "action": task.action,
        "completion": task.completion,
        "failed": task.failed,
        "details": task.details or {},
    }


class ProgressChannel:
    """In-process fan-out of task status changes"""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[Dict[str, Any]], None]] = []

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, status: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Task status subscriber failed: {e}")


channel = ProgressChannel()


class TaskService:
    """Database side of tasks"""

    def __init__(self, db: Session, progress_channel: Optional[ProgressChannel] = None):
        self.db = db
        self.channel = progress_channel or channel

    def create(self, action: str, options: Dict[str, Any], user_id: Optional[int] = None, token: Optional[str] = None) -> Task:
        """New task, or the running task already holding ``token``."""
        if token:
            existing = self._live(token)
            if existing is not None:
                if not existing.finished:
                    logger.info(f"Resuming task {existing.id} for token '{token}'")
                    return existing
                # A finished task gives up its token
                existing.deleted = True
                self.db.commit()
        task = Task(action=action, options=options or {}, details={}, token=token, user_id=user_id)
        self.db.add(task)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self._live(token)
            if existing is None:
                raise
            return existing
        self.db.refresh(task)
        self._publish(task)
        return task

    def find_by_token(self, token: str) -> Task:
        task = self._live(token)
        if task is None:
            raise NotFound("Task not found")
        return task

    def report(self, task: Task, percent: int) -> bool:
        """Record progress; returns False when the write was rejected."""
        percent = max(0, min(99, int(percent)))
        rows = (
            self.db.query(Task)
            .filter(
                Task.id == task.id,
                Task.failed == False,  # noqa: E712
                Task.completion < percent,
            )
            .update({Task.completion: percent, Task.mtime: utcnow()}, synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(task)
        if rows:
            self._publish(task)
        return bool(rows)

    def complete(self, task: Task, details: Optional[Dict[str, Any]] = None) -> bool:
        return self._finish(task, {Task.completion: 100}, details)

    def fail(self, task: Task, message: str, details: Optional[Dict[str, Any]] = None) -> bool:
        return self._finish(task, {Task.failed: True}, {**(details or {}), "error": message})

    def abort(self, token: str) -> Task:
        task = self.find_by_token(token)
        if self.fail(task, "Aborted"):
            logger.info(f"Task {task.id} aborted")
        return task

    def mark_seen(self, token: str) -> Task:
        task = self.find_by_token(token)
        task.seen = True
        self.db.commit()
        return task

    def _finish(self, task: Task, values: Dict[Any, Any], details: Optional[Dict[str, Any]]) -> bool:
        merged = {**(task.details or {}), **(details or {})}
        now = utcnow()
        rows = (
            self.db.query(Task)
            .filter(
                Task.id == task.id,
                Task.failed == False,  # noqa: E712
                Task.completion < 100,
            )
            .update({**values, Task.details: merged, Task.etime: now, Task.mtime: now}, synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(task)
        if rows:
            self._publish(task)
        else:
            logger.debug(f"Task {task.id} was already finished")
        return bool(rows)

    def _live(self, token: Optional[str]) -> Optional[Task]:
        if not token:
            return None
        return self.db.query(Task).filter(Task.token == token, Task.deleted == False).first()  # noqa: E712

    def _publish(self, task: Task) -> None:
        self.channel.publish(task_status(task))


class TaskProgress:
    """Handed to a running job; raises ``TaskAborted`` once the task is finalized from outside."""

    def __init__(self, service: TaskService, task: Task):
        self.service = service
        self.task = task

    def report(self, percent: int) -> None:
        if not self.service.report(self.task, percent) and self.task.finished:
            raise TaskAborted(f"Task {self.task.id} is no longer running")


Handler = Callable[[Session, Task, TaskProgress], Optional[Dict[str, Any]]]


class TaskRunner:
    """Runs tasks as one-shot scheduler jobs, each on its own session"""

    def __init__(self, scheduler=None, session_factory=SessionLocal, progress_channel: Optional[ProgressChannel] = None):
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.channel = progress_channel or channel
        self.handlers: Dict[str, Handler] = {}

    def register(self, action: str, handler: Handler) -> None:
        self.handlers[action] = handler

    def submit(self, task_id: int) -> None:
        if self.scheduler is None:
            self.run(task_id)
            return
        self.scheduler.add_job(func=self.run, args=[task_id], id=f"task_{task_id}", replace_existing=True)
        logger.info(f"Queued task {task_id}")

    def run(self, task_id: int) -> None:
        db = self.session_factory()
        try:
            service = TaskService(db, self.channel)
            task = db.query(Task).filter(Task.id == task_id).first()
            if task is None or task.finished:
                logger.info(f"Task {task_id} is gone or finished, not running it")
                return
            handler = self.handlers.get(task.action)
            if handler is None:
                service.fail(task, f"Unknown action '{task.action}'")
                return
            logger.info(f"Running task {task.id} ({task.action})")
            try:
                result = handler(db, task, TaskProgress(service, task))
            except TaskAborted:
                db.rollback()
                logger.info(f"Task {task.id} stopped after being aborted")
                return
            except SyncError as e:
                db.rollback()
                logger.error(f"Task {task.id} failed: {e.message}")
                self._log_failure(db, task, e.message)
                service.fail(task, e.message, {"status_code": e.status_code})
                return
            except Exception as e:
                db.rollback()
                logger.exception(f"Task {task.id} failed unexpectedly")
                self._log_failure(db, task, str(e))
                service.fail(task, str(e))
                return
            service.complete(task, result)
            logger.info(f"Task {task.id} completed")
        finally:
            db.close()

    @staticmethod
    def _log_failure(db: Session, task: Task, message: str) -> None:
        options = task.options or {}
        repo_id = options.get("repo_id")
        if repo_id is not None and db.query(Repo).filter(Repo.id == repo_id).first() is None:
            repo_id = None
        db.add(
            SyncLog(
                repo_id=repo_id,
                story_id=options.get("story_id"),
                task_id=task.id,
                status=SyncStatus.FAILED,
                message=message,
            )
        )
        db.commit()
