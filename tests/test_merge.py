import unittest
from datetime import datetime


def _user(**kwargs):
    from storybridge.models import User

    return User(details={}, links=[], exchange=[], **kwargs)


class FieldPathTests(unittest.TestCase):
    def test_details_paths_read_and_write_json(self):
        from storybridge.sync.paths import delete_path, get_path, has_path, set_path

        user = _user(username="ann")
        set_path(user, "details.name", "Ann")

        self.assertEqual(user.details, {"name": "Ann"})
        self.assertEqual(get_path(user, "details.name"), "Ann")
        self.assertEqual(get_path(user, "username"), "ann")
        self.assertTrue(has_path(user, "details.name"))

        delete_path(user, "details.name")
        self.assertFalse(has_path(user, "details.name"))

    def test_unknown_paths_are_rejected(self):
        from storybridge.sync.paths import get_path, set_path

        user = _user()
        with self.assertRaises(KeyError):
            get_path(user, "details.password")
        with self.assertRaises(KeyError):
            set_path({}, "assignee_ids", [1])

    def test_values_are_copied(self):
        from storybridge.sync.paths import get_path, set_path

        user = _user()
        image = {"url": "/media/1"}
        set_path(user, "details.profile_image", image)
        image["url"] = "/media/2"
        got = get_path(user, "details.profile_image")
        got["url"] = "/media/3"

        self.assertEqual(user.details["profile_image"], {"url": "/media/1"})


class OverwritePolicyTests(unittest.TestCase):
    def test_parse(self):
        from storybridge.sync.merge import OverwriteMode, OverwritePolicy

        self.assertEqual(OverwritePolicy.parse("always").mode, OverwriteMode.ALWAYS)
        policy = OverwritePolicy.parse("match-previous:details.title")
        self.assertEqual(policy.mode, OverwriteMode.MATCH_PREVIOUS)
        self.assertEqual(policy.field, "details.title")

    def test_parse_rejects_malformed_policies(self):
        from storybridge.sync.merge import OverwritePolicy

        for value in ("sometimes", "match-previous", "always:title", ""):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    OverwritePolicy.parse(value)


class ImportPropertyTests(unittest.TestCase):
    def test_always_overwrites_and_reports_changes(self):
        from storybridge.sync.merge import get_snapshot, import_property

        user = _user()
        self.assertTrue(import_property(user, "gitlab", 1, "username", "ann"))
        self.assertFalse(import_property(user, "gitlab", 1, "username", "ann"))
        self.assertEqual(user.username, "ann")
        self.assertEqual(get_snapshot(user, "gitlab", 1).imported, {"username": "ann"})

    def test_match_previous_keeps_local_edit(self):
        from storybridge.sync.merge import import_property

        user = _user()
        import_property(user, "gitlab", 1, "username", "ann", "match-previous:username")
        user.username = "annie"

        changed = import_property(user, "gitlab", 1, "username", "ann2", "match-previous:username")

        self.assertFalse(changed)
        self.assertEqual(user.username, "annie")

    def test_match_previous_follows_remote_when_untouched(self):
        from storybridge.sync.merge import import_property

        user = _user()
        import_property(user, "gitlab", 1, "username", "ann", "match-previous:username")

        self.assertTrue(import_property(user, "gitlab", 1, "username", "ann2", "match-previous:username"))
        self.assertEqual(user.username, "ann2")

    def test_snapshots_are_kept_per_server(self):
        from storybridge.sync.merge import get_snapshot, get_snapshots, import_property

        user = _user()
        import_property(user, "gitlab", 1, "username", "ann")
        import_property(user, "gitlab", 2, "username", "ann-two")

        self.assertEqual(len(get_snapshots(user)), 2)
        self.assertEqual(get_snapshot(user, "gitlab", 1).imported["username"], "ann")
        self.assertEqual(get_snapshot(user, "gitlab", 2).imported["username"], "ann-two")

    def test_datetimes_are_compared_in_json_form(self):
        from storybridge.models import Reaction
        from storybridge.sync.merge import get_snapshot, import_property

        reaction = Reaction(details={}, links=[], exchange=[])
        when = datetime(2024, 1, 2, 3, 4, 5)
        self.assertTrue(import_property(reaction, "gitlab", 1, "ptime", when))
        self.assertFalse(import_property(reaction, "gitlab", 1, "ptime", datetime(2024, 1, 2, 3, 4, 5)))
        self.assertEqual(get_snapshot(reaction, "gitlab", 1).imported["ptime"], "2024-01-02T03:04:05")

    def test_reimporting_none_into_a_column_changes_nothing(self):
        from storybridge.models import Reaction
        from storybridge.sync.merge import import_property

        reaction = Reaction(details={}, links=[], exchange=[])
        self.assertFalse(import_property(reaction, "gitlab", 1, "ptime", None))
        self.assertFalse(import_property(reaction, "gitlab", 1, "ptime", None))
        self.assertIsNone(reaction.ptime)

    def test_clear_snapshot(self):
        from storybridge.sync.merge import clear_snapshot, get_snapshots, import_property

        user = _user()
        import_property(user, "gitlab", 1, "username", "ann")
        import_property(user, "gitlab", 2, "username", "ann")
        clear_snapshot(user, "gitlab", 1)

        self.assertEqual([s.server_id for s in get_snapshots(user)], [2])


class ExportPropertyTests(unittest.TestCase):
    def test_fills_an_empty_draft(self):
        from storybridge.models import Story
        from storybridge.sync.merge import export_property, get_snapshot

        story = Story(details={}, links=[], exchange=[])
        draft = {}
        self.assertTrue(export_property(story, draft, "gitlab", 1, "title", "Lamp", "match-previous:title"))
        self.assertEqual(draft, {"title": "Lamp"})
        self.assertEqual(get_snapshot(story, "gitlab", 1).exported["title"], "Lamp")

    def test_keeps_remote_edit(self):
        from storybridge.models import Story
        from storybridge.sync.merge import export_property, record_exported

        story = Story(details={}, links=[], exchange=[])
        record_exported(story, "gitlab", 1, {"title": "Lamp"})
        draft = {"title": "Lamp (edited upstream)"}

        changed = export_property(story, draft, "gitlab", 1, "title", "Lamp v2", "match-previous:title")

        self.assertFalse(changed)
        self.assertEqual(draft["title"], "Lamp (edited upstream)")

    def test_overwrites_unchanged_remote_value(self):
        from storybridge.models import Story
        from storybridge.sync.merge import export_property, record_exported

        story = Story(details={}, links=[], exchange=[])
        record_exported(story, "gitlab", 1, {"labels": ["bug"]})
        draft = {"labels": ["bug"]}

        self.assertTrue(export_property(story, draft, "gitlab", 1, "labels", ["bug", "ui"], "match-previous:labels"))
        self.assertEqual(draft["labels"], ["bug", "ui"])


if __name__ == "__main__":
    unittest.main()
