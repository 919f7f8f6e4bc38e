import unittest
from types import SimpleNamespace

from factories import FakeTransport, add_repo, add_server, add_story, add_user, make_session_factory


def _issue_echo(issue_id, iid, project_id):
    """Response GitLab would give for a create or update carrying ``body``."""

    def respond(body):
        labels = body.get("labels") or ""
        return {
            "id": issue_id,
            "iid": iid,
            "project_id": project_id,
            "title": body.get("title"),
            "description": body.get("description"),
            "confidential": body.get("confidential", False),
            "labels": labels.split(",") if labels else [],
            "state": "opened",
        }

    return respond


class PlanTransitionTests(unittest.TestCase):
    def test_transitions(self):
        from storybridge.errors import BadRequest
        from storybridge.services.issue_exporter import RepoTarget, Transition, plan_transition

        a = RepoTarget(1, server_id=1)
        b = RepoTarget(2, server_id=1)
        c = RepoTarget(3, server_id=2)
        untracked = RepoTarget(4, server_id=1, issues_enabled=False)

        self.assertEqual(plan_transition(None, None), Transition.NOOP)
        self.assertEqual(plan_transition(None, a), Transition.CREATE)
        self.assertEqual(plan_transition(a, a), Transition.UPDATE)
        self.assertEqual(plan_transition(a, b), Transition.MOVE)
        self.assertEqual(plan_transition(a, c), Transition.CREATE_THEN_REMOVE)
        self.assertEqual(plan_transition(a, None), Transition.REMOVE)
        self.assertEqual(plan_transition(a, untracked), Transition.REMOVE)
        with self.assertRaises(BadRequest):
            plan_transition(None, untracked)


class IssueExporterTests(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        self.db = self.Session()
        self.server = add_server(self.db, "gitlab-main")
        self.other_server = add_server(self.db, "gitlab-other")
        self.repo_a = add_repo(self.db, self.server, 10)
        self.repo_b = add_repo(self.db, self.server, 20)
        self.repo_c = add_repo(self.db, self.other_server, 30)
        self.repo_untracked = add_repo(self.db, self.server, 40, issues_enabled=False)
        self.user = add_user(self.db, "ann", linked=[(self.server, 7), (self.other_server, 8)])
        self.story = add_story(self.db, self.user)
        self.transport = FakeTransport(
            {("POST", "/projects/10/issues"): _issue_echo(1001, 5, 10)}
        )

    def tearDown(self):
        self.db.close()

    def _export(self, repo=None, **options):
        from storybridge.services.issue_exporter import IssueExporter

        task = SimpleNamespace(
            id=None,
            user_id=self.user.id,
            options={"story_id": self.story.id, "repo_id": repo.id if repo else None, **options},
        )
        return IssueExporter(self.db, self.transport, address="https://site").export_story(task)

    def _reactions(self, type=None):
        from storybridge.models import Reaction

        query = self.db.query(Reaction).filter(Reaction.story_id == self.story.id)
        if type:
            query = query.filter(Reaction.type == type)
        return query.order_by(Reaction.id).all()

    def _add_note(self, note_id):
        from storybridge.models import Reaction
        from storybridge.sync.links import find_link, inherit_link

        note = Reaction(type="note", story_id=self.story.id, user_id=self.user.id, details={}, links=[], exchange=[])
        keys = find_link(self.story, "gitlab", self.server.id).keys.model_dump(exclude_none=True)
        inherit_link(note, "gitlab", self.server.id, {**keys, "note": {"id": note_id}})
        self.db.add(note)
        self.db.commit()
        return note

    def test_create_links_story_and_adds_tracking_reaction(self):
        from storybridge.sync.links import find_link

        result = self._export(self.repo_a, labels=["bug"])

        self.assertEqual(result["transition"], "create")
        method, path, body, user_id = self.transport.calls[0]
        self.assertEqual((method, path, user_id), ("POST", "/projects/10/issues", 7))
        self.assertEqual(body["title"], "Broken lamp")
        self.assertEqual(body["description"], "The lamp in hall 3 flickers")
        self.assertEqual(body["labels"], "bug")
        self.assertFalse(body["confidential"])

        self.db.refresh(self.story)
        link = find_link(self.story, "gitlab", self.server.id)
        self.assertEqual(link.keys.project.id, 10)
        self.assertEqual((link.keys.issue.id, link.keys.issue.number), (1001, 5))
        self.assertEqual(self.story.type, "issue")
        self.assertTrue(self.story.details["exported"])
        self.assertIn("#bug", self.story.tags)
        self.assertIsNotNone(self.story.etime)

        tracking = self._reactions("tracking")
        self.assertEqual(len(tracking), 1)
        self.assertEqual(find_link(tracking[0], "gitlab", self.server.id).keys.issue.id, 1001)

    def test_create_needs_a_title(self):
        from storybridge.errors import BadRequest

        self.story.details = {"text": {"en": "No title"}}
        self.db.commit()

        with self.assertRaises(BadRequest):
            self._export(self.repo_a)
        self.assertEqual(self.transport.calls, [])

    def test_user_without_account_is_refused(self):
        from storybridge.errors import Forbidden

        self.user.links = []
        self.user.link_tokens = ""
        self.db.commit()

        with self.assertRaises(Forbidden):
            self._export(self.repo_a)

    def test_repo_without_tracker_cannot_receive_new_issue(self):
        from storybridge.errors import BadRequest

        with self.assertRaises(BadRequest):
            self._export(self.repo_untracked)

    def test_update_without_changes_writes_nothing(self):
        self._export(self.repo_a, labels=["bug"])
        created = self.transport.calls[0][2]
        self.transport.responses[("GET", "/projects/10/issues/5")] = _issue_echo(1001, 5, 10)(created)

        result = self._export(self.repo_a, labels=["bug"])

        self.assertEqual(result["transition"], "update")
        self.assertEqual(self.transport.calls_to("PUT"), [])
        self.assertEqual(len(self._reactions("tracking")), 1)

    def test_update_pushes_local_changes(self):
        self._export(self.repo_a, labels=["bug"])
        created = self.transport.calls[0][2]
        self.transport.responses[("GET", "/projects/10/issues/5")] = _issue_echo(1001, 5, 10)(created)
        self.transport.responses[("PUT", "/projects/10/issues/5")] = _issue_echo(1001, 5, 10)

        self._export(self.repo_a, title="Broken lamp in hall 3", labels=["bug", "urgent"])

        (_, _, body, user_id), = self.transport.calls_to("PUT")
        self.assertEqual(body["title"], "Broken lamp in hall 3")
        self.assertEqual(body["labels"], "bug,urgent")
        self.assertEqual(user_id, 7)
        self.db.refresh(self.story)
        self.assertEqual(self.story.details["title"], "Broken lamp in hall 3")

    def test_remote_title_edit_survives_update(self):
        self._export(self.repo_a)
        remote = _issue_echo(1001, 5, 10)(self.transport.calls[0][2])
        remote["title"] = "Lamp flickers (triaged)"
        self.transport.responses[("GET", "/projects/10/issues/5")] = remote

        self._export(self.repo_a)

        self.assertEqual(self.transport.calls_to("PUT"), [])
        self.db.refresh(self.story)
        self.assertEqual(self.story.details["title"], "Lamp flickers (triaged)")

    def test_move_within_server_relinks_reactions(self):
        from storybridge.sync.links import find_link

        self._export(self.repo_a)
        note = self._add_note(55)
        moved = _issue_echo(2002, 1, 20)(self.transport.calls[0][2])
        self.transport.responses[("POST", "/projects/10/issues/5/move")] = moved

        result = self._export(self.repo_b)

        self.assertEqual(result["transition"], "move")
        (_, _, body, _), = [c for c in self.transport.calls if c[1].endswith("/move")]
        self.assertEqual(body, {"to_project_id": 20})
        self.assertEqual(self.transport.calls_to("PUT"), [])

        self.db.refresh(self.story)
        link = find_link(self.story, "gitlab", self.server.id)
        self.assertEqual((link.keys.project.id, link.keys.issue.id, link.keys.issue.number), (20, 2002, 1))

        self.db.refresh(note)
        note_link = find_link(note, "gitlab", self.server.id)
        self.assertEqual(note_link.keys.project.id, 20)
        self.assertEqual(note_link.keys.issue.id, 2002)
        self.assertEqual(note_link.keys.note.id, 55)
        self.assertEqual(len(self._reactions("tracking")), 1)

    def test_move_across_servers_creates_then_removes(self):
        from storybridge.sync.links import find_link

        self._export(self.repo_a)
        note = self._add_note(55)
        self.transport.responses[("POST", "/projects/30/issues")] = _issue_echo(3003, 1, 30)
        self.transport.responses[("DELETE", "/projects/10/issues/5")] = None

        result = self._export(self.repo_c)

        self.assertEqual(result["transition"], "create-then-remove")
        (_, _, _, user_id), = [c for c in self.transport.calls if c[1] == "/projects/30/issues"]
        self.assertEqual(user_id, 8)
        self.assertEqual(len(self.transport.calls_to("DELETE")), 1)

        self.db.refresh(self.story)
        self.assertIsNone(find_link(self.story, "gitlab", self.server.id))
        self.assertEqual(find_link(self.story, "gitlab", self.other_server.id).keys.issue.id, 3003)
        self.assertEqual(self.story.type, "issue")

        self.db.refresh(note)
        self.assertTrue(note.deleted)
        tracking, = self._reactions("tracking")
        self.assertFalse(tracking.deleted)
        self.assertIsNone(find_link(tracking, "gitlab", self.server.id))
        self.assertIsNotNone(find_link(tracking, "gitlab", self.other_server.id))

    def test_removal_turns_story_back_into_post(self):
        from storybridge.sync.links import get_links

        self._export(self.repo_a, labels=["bug"])
        self.transport.responses[("DELETE", "/projects/10/issues/5")] = None

        result = self._export(self.repo_untracked)

        self.assertEqual(result["transition"], "remove")
        self.db.refresh(self.story)
        self.assertEqual(self.story.type, "post")
        self.assertIsNone(self.story.etime)
        self.assertEqual(get_links(self.story), [])
        self.assertEqual(self.story.exchange, [])
        for key in ("title", "labels", "exported"):
            self.assertNotIn(key, self.story.details)
        self.assertTrue(all(r.deleted for r in self._reactions("tracking")))

    def test_removal_tolerates_missing_issue(self):
        from storybridge.errors import UpstreamFailure

        self._export(self.repo_a)
        self.transport.responses[("DELETE", "/projects/10/issues/5")] = UpstreamFailure("gone", response_code=404)

        result = self._export(None)

        self.assertEqual(result["transition"], "remove")
        self.db.refresh(self.story)
        self.assertEqual(self.story.type, "post")

    def test_removal_propagates_other_failures(self):
        from storybridge.errors import UpstreamFailure

        self._export(self.repo_a)
        self.transport.responses[("DELETE", "/projects/10/issues/5")] = UpstreamFailure("boom", response_code=500)

        with self.assertRaises(UpstreamFailure):
            self._export(None)
        self.db.refresh(self.story)
        self.assertEqual(self.story.type, "issue")

    def test_reimport_after_export_changes_nothing(self):
        from storybridge.services.issue_importer import IssueImporter

        self._export(self.repo_a, labels=["bug"])
        gl_issue = _issue_echo(1001, 5, 10)(self.transport.calls[0][2])
        self.db.refresh(self.story)
        generation = self.story.generation
        details = dict(self.story.details)

        story = IssueImporter(self.db, self.transport).import_issue(self.server, self.repo_a, gl_issue)

        self.assertEqual(story.id, self.story.id)
        self.db.refresh(self.story)
        self.assertEqual(self.story.generation, generation)
        self.assertEqual(self.story.details, details)
        self.assertIsNone(self.story.itime)

    def test_export_is_logged(self):
        from storybridge.models import SyncLog
        from storybridge.models.sync_log import SyncDirection, SyncStatus

        self._export(self.repo_a)

        log, = self.db.query(SyncLog).all()
        self.assertEqual(log.status, SyncStatus.SUCCESS)
        self.assertEqual(log.direction, SyncDirection.EXPORT)
        self.assertEqual(log.repo_id, self.repo_a.id)
        self.assertEqual(log.story_id, self.story.id)

    def test_invalid_options(self):
        from storybridge.errors import BadRequest
        from storybridge.services.issue_exporter import IssueExporter

        task = SimpleNamespace(id=None, user_id=self.user.id, options={"repo_id": self.repo_a.id})
        with self.assertRaises(BadRequest):
            IssueExporter(self.db, self.transport).export_story(task)


if __name__ == "__main__":
    unittest.main()
