import unittest

from factories import make_session_factory


class TaskServiceTests(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        self.db = self.Session()

    def tearDown(self):
        self.db.close()

    def _service(self, channel=None):
        from storybridge.services.tasks import ProgressChannel, TaskService

        return TaskService(self.db, channel or ProgressChannel())

    def test_unfinished_task_is_resumed_by_token(self):
        service = self._service()
        first = service.create("export-issue", {"story_id": 1}, user_id=3, token="tok-1")
        second = service.create("export-issue", {"story_id": 1}, user_id=3, token="tok-1")

        self.assertEqual(first.id, second.id)
        self.assertEqual(service.find_by_token("tok-1").id, first.id)

    def test_finished_task_gives_up_its_token(self):
        from storybridge.models import Task

        service = self._service()
        first = service.create("export-issue", {}, token="tok-1")
        service.complete(first)

        second = service.create("export-issue", {}, token="tok-1")

        self.assertNotEqual(first.id, second.id)
        self.db.refresh(first)
        self.assertTrue(first.deleted)
        self.assertEqual(self.db.query(Task).filter(Task.deleted == False).count(), 1)  # noqa: E712

    def test_progress_only_moves_forward(self):
        service = self._service()
        task = service.create("import-events", {})

        self.assertTrue(service.report(task, 50))
        self.assertFalse(service.report(task, 30))
        self.assertFalse(service.report(task, 50))
        self.assertEqual(task.completion, 50)
        # Only completion reaches 100
        self.assertTrue(service.report(task, 150))
        self.assertEqual(task.completion, 99)

    def test_completed_task_accepts_no_more_writes(self):
        service = self._service()
        task = service.create("import-events", {})

        self.assertTrue(service.complete(task, {"events": 2}))
        self.assertFalse(service.report(task, 60))
        self.assertFalse(service.fail(task, "late failure"))
        self.assertFalse(service.complete(task))

        self.assertEqual(task.completion, 100)
        self.assertFalse(task.failed)
        self.assertEqual(task.details, {"events": 2})
        self.assertIsNotNone(task.etime)

    def test_failure_is_terminal(self):
        service = self._service()
        task = service.create("import-events", {})
        service.report(task, 40)

        self.assertTrue(service.fail(task, "Repo not found", {"status_code": 404}))
        self.assertFalse(service.complete(task))

        self.assertTrue(task.failed)
        self.assertEqual(task.completion, 40)
        self.assertEqual(task.details, {"status_code": 404, "error": "Repo not found"})

    def test_abort_stops_the_job_at_its_next_report(self):
        from storybridge.errors import TaskAborted
        from storybridge.services.tasks import TaskProgress

        service = self._service()
        task = service.create("import-events", {}, token="tok-2")
        progress = TaskProgress(service, task)
        progress.report(10)

        service.abort("tok-2")

        with self.assertRaises(TaskAborted):
            progress.report(20)
        self.assertEqual(task.details["error"], "Aborted")

    def test_seen_is_the_only_change_after_finishing(self):
        service = self._service()
        task = service.create("import-events", {}, token="tok-3")
        service.complete(task)

        service.mark_seen("tok-3")

        self.db.refresh(task)
        self.assertTrue(task.seen)
        self.assertEqual(task.completion, 100)

    def test_unknown_token(self):
        from storybridge.errors import NotFound

        with self.assertRaises(NotFound):
            self._service().find_by_token("nope")

    def test_status_changes_are_published(self):
        from storybridge.services.tasks import ProgressChannel

        channel = ProgressChannel()
        seen = []
        unsubscribe = channel.subscribe(seen.append)
        service = self._service(channel)

        task = service.create("import-events", {})
        service.report(task, 20)
        service.report(task, 10)
        service.complete(task)
        unsubscribe()

        self.assertEqual([s["completion"] for s in seen], [0, 20, 100])


class TaskRunnerTests(unittest.TestCase):
    def setUp(self):
        from storybridge.services.tasks import ProgressChannel, TaskRunner, TaskService

        self.Session = make_session_factory()
        self.db = self.Session()
        self.channel = ProgressChannel()
        self.service = TaskService(self.db, self.channel)
        self.runner = TaskRunner(session_factory=self.Session, progress_channel=self.channel)

    def tearDown(self):
        self.db.close()

    def test_successful_job_completes_task(self):
        def handler(db, task, progress):
            progress.report(50)
            return {"story_id": task.options["story_id"]}

        self.runner.register("export-issue", handler)
        task = self.service.create("export-issue", {"story_id": 4})

        self.runner.submit(task.id)

        self.db.refresh(task)
        self.assertEqual(task.completion, 100)
        self.assertEqual(task.details, {"story_id": 4})

    def test_sync_errors_fail_task_and_are_logged(self):
        from storybridge.errors import BadRequest
        from storybridge.models import SyncLog
        from storybridge.models.sync_log import SyncStatus

        def handler(db, task, progress):
            raise BadRequest("Repo 9 has no issue tracker")

        self.runner.register("export-issue", handler)
        task = self.service.create("export-issue", {"story_id": 4, "repo_id": 9})

        self.runner.run(task.id)

        self.db.refresh(task)
        self.assertTrue(task.failed)
        self.assertEqual(task.details["error"], "Repo 9 has no issue tracker")
        self.assertEqual(task.details["status_code"], 400)
        log, = self.db.query(SyncLog).all()
        self.assertEqual(log.status, SyncStatus.FAILED)
        self.assertIsNone(log.repo_id)
        self.assertEqual(log.story_id, 4)

    def test_unexpected_errors_fail_task(self):
        def handler(db, task, progress):
            raise RuntimeError("kaboom")

        self.runner.register("import-events", handler)
        task = self.service.create("import-events", {})

        self.runner.run(task.id)

        self.db.refresh(task)
        self.assertTrue(task.failed)
        self.assertEqual(task.details["error"], "kaboom")

    def test_aborted_job_leaves_task_failed(self):
        from storybridge.services.tasks import TaskService

        def handler(db, task, progress):
            TaskService(db, self.channel).abort(task.token)
            progress.report(50)
            raise AssertionError("not reached")

        self.runner.register("import-events", handler)
        task = self.service.create("import-events", {}, token="tok-4")

        self.runner.run(task.id)

        self.db.refresh(task)
        self.assertTrue(task.failed)
        self.assertEqual(task.details["error"], "Aborted")

    def test_unknown_action(self):
        task = self.service.create("reindex", {})

        self.runner.run(task.id)

        self.db.refresh(task)
        self.assertTrue(task.failed)

    def test_finished_tasks_are_not_rerun(self):
        calls = []
        self.runner.register("import-events", lambda db, task, progress: calls.append(task.id))
        task = self.service.create("import-events", {})
        self.service.complete(task)

        self.runner.run(task.id)

        self.assertEqual(calls, [])


if __name__ == "__main__":
    unittest.main()
