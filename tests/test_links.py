import unittest

from factories import add_repo, add_server, make_session_factory


class ObjectRefMatchingTests(unittest.TestCase):
    def test_id_and_number_must_agree(self):
        from storybridge.sync.links import ObjectRef

        ref = ObjectRef(id=1001, number=5)
        self.assertTrue(ref.matches(ObjectRef(id="1001")))
        self.assertTrue(ref.matches(ObjectRef(number=5)))
        self.assertFalse(ref.matches(ObjectRef(id=1002)))
        self.assertFalse(ref.matches(ObjectRef(id=1001, number=6)))

    def test_single_id_matches_one_of_many(self):
        from storybridge.sync.links import ObjectRef

        ref = ObjectRef(ids=["aaa", "bbb"])
        self.assertTrue(ref.matches(ObjectRef(id="bbb")))
        self.assertFalse(ref.matches(ObjectRef(id="ccc")))
        self.assertTrue(ref.matches(ObjectRef(ids=["aaa"])))
        self.assertFalse(ref.matches(ObjectRef(ids=["aaa", "ccc"])))


class LinkRegistryTests(unittest.TestCase):
    def test_inherit_link_merges_keys_per_server(self):
        from storybridge.models import Story
        from storybridge.sync.links import find_link, get_links, inherit_link

        story = Story(links=[], exchange=[], details={})
        inherit_link(story, "gitlab", 1, {"project": {"id": 10}})
        inherit_link(story, "gitlab", 1, {"issue": {"id": 1001, "number": 5}})
        inherit_link(story, "gitlab", 2, {"project": {"id": 30}})

        self.assertEqual(len(get_links(story)), 2)
        link = find_link(story, "gitlab", 1)
        self.assertEqual(link.keys.project.id, 10)
        self.assertEqual(link.keys.issue.number, 5)
        self.assertIn(" gitlab:1:issue.id=1001 ", story.link_tokens)

    def test_remove_link_only_touches_one_server(self):
        from storybridge.models import Story
        from storybridge.sync.links import find_link, inherit_link, remove_link

        story = Story(links=[], exchange=[], details={})
        inherit_link(story, "gitlab", 1, {"project": {"id": 10}})
        inherit_link(story, "gitlab", 2, {"project": {"id": 30}})

        removed = remove_link(story, "gitlab", 1)

        self.assertEqual([link.server_id for link in removed], [1])
        self.assertIsNone(find_link(story, "gitlab", 1))
        self.assertIsNotNone(find_link(story, "gitlab", 2))
        self.assertNotIn("gitlab:1", story.link_tokens)

    def test_extend_link_does_not_mutate(self):
        from storybridge.models import Repo
        from storybridge.sync.links import extend_link, inherit_link

        repo = Repo(name="r", links=[], exchange=[], details={})
        inherit_link(repo, "gitlab", 1, {"project": {"id": 10}})
        before = list(repo.links)

        criteria = extend_link(repo, "gitlab", 1, {"issue": {"id": 7}})

        self.assertEqual(criteria.keys.project.id, 10)
        self.assertEqual(criteria.keys.issue.id, 7)
        self.assertEqual(repo.links, before)


class FindByLinkTests(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        self.db = self.Session()

    def tearDown(self):
        self.db.close()

    def test_lookup_by_project_and_commit(self):
        from storybridge.models import Story
        from storybridge.sync.links import ExternalLink, ObjectKeys, ObjectRef, find_by_link, inherit_link

        server = add_server(self.db)
        add_repo(self.db, server, 10)
        push = Story(type="push", user_ids=[], tags=[], details={}, links=[], exchange=[])
        inherit_link(push, "gitlab", server.id, {"project": {"id": 10}, "commit": {"ids": ["c1", "c2"]}})
        other = Story(type="push", user_ids=[], tags=[], details={}, links=[], exchange=[])
        inherit_link(other, "gitlab", server.id, {"project": {"id": 11}, "commit": {"ids": ["c2"]}})
        self.db.add_all([push, other])
        self.db.commit()

        criteria = ExternalLink(
            type="gitlab",
            server_id=server.id,
            keys=ObjectKeys(project=ObjectRef(id=10), commit=ObjectRef(id="c2")),
        )
        self.assertEqual([s.id for s in find_by_link(self.db, Story, criteria)], [push.id])

    def test_deleted_rows_are_skipped_unless_asked(self):
        from storybridge.models import Repo
        from storybridge.sync.links import ExternalLink, ObjectKeys, ObjectRef, find_by_link

        server = add_server(self.db)
        repo = add_repo(self.db, server, 10)
        repo.deleted = True
        self.db.commit()

        criteria = ExternalLink(type="gitlab", server_id=server.id, keys=ObjectKeys(project=ObjectRef(id=10)))
        self.assertEqual(find_by_link(self.db, Repo, criteria), [])
        self.assertEqual(len(find_by_link(self.db, Repo, criteria, include_deleted=True)), 1)

    def test_numbers_do_not_match_as_substrings(self):
        from storybridge.models import Repo
        from storybridge.sync.links import ExternalLink, ObjectKeys, ObjectRef, find_by_link

        server = add_server(self.db)
        add_repo(self.db, server, 100)

        criteria = ExternalLink(type="gitlab", server_id=server.id, keys=ObjectKeys(project=ObjectRef(id=10)))
        self.assertEqual(find_by_link(self.db, Repo, criteria), [])


if __name__ == "__main__":
    unittest.main()
