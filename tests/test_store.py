import unittest
from unittest.mock import Mock

from sqlalchemy.orm.exc import StaleDataError

from factories import add_server, add_story, add_user, make_session_factory


class SaveWithRetryTests(unittest.TestCase):
    def test_stale_write_is_reapplied_on_fresh_row(self):
        from storybridge.services.store import save_with_retry

        session = Mock()
        session.commit.side_effect = [StaleDataError("generation moved"), None]
        record = object()
        applied = []

        result = save_with_retry(session, record, applied.append)

        self.assertIs(result, record)
        self.assertEqual(len(applied), 2)
        session.rollback.assert_called_once_with()
        session.refresh.assert_called_once_with(record)

    def test_gives_up_after_attempts(self):
        from storybridge.services.store import save_with_retry

        session = Mock()
        session.commit.side_effect = StaleDataError("generation moved")

        with self.assertRaises(StaleDataError):
            save_with_retry(session, object(), lambda r: None, attempts=2)
        self.assertEqual(session.commit.call_count, 2)

    def test_generation_guards_concurrent_writes(self):
        from storybridge.models import Story

        Session = make_session_factory()
        db = Session()
        try:
            user = add_user(db)
            story = add_story(db, user)
            self.assertEqual(story.generation, 1)

            story.ready = False
            db.commit()
            self.assertEqual(story.generation, 2)

            db.query(Story).filter(Story.id == story.id).update({Story.generation: 5}, synchronize_session=False)
            story.public = False
            with self.assertRaises(StaleDataError):
                db.commit()
        finally:
            db.close()


class InsertReactionTests(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        self.db = self.Session()
        add_server(self.db)
        self.user = add_user(self.db)
        self.story = add_story(self.db, self.user)

    def tearDown(self):
        self.db.close()

    def _reaction(self, type):
        from storybridge.models import Reaction

        return Reaction(type=type, story_id=self.story.id, user_id=self.user.id, details={}, links=[], exchange=[])

    def test_likes_are_singular(self):
        from storybridge.services.store import insert_reaction

        first = insert_reaction(self.db, self._reaction("like"))
        second = insert_reaction(self.db, self._reaction("like"))
        self.assertEqual(first.id, second.id)

    def test_notes_are_not(self):
        from storybridge.services.store import insert_reaction

        first = insert_reaction(self.db, self._reaction("note"))
        second = insert_reaction(self.db, self._reaction("note"))
        self.assertNotEqual(first.id, second.id)


if __name__ == "__main__":
    unittest.main()
