"""
Tests for the reading session orchestrator.

The session runs against an in-memory document store and key-value store;
the AI client is an AsyncMock.
"""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from core.kv_store import JsonFileStore
from reading.bookmarks import BookmarkManager
from reading.enrichment import Feature, FeatureStatus
from reading.errors import EnrichmentError, TransportError
from reading.loader import ContentLoader
from reading.models import ReadingPosition
from reading.progress import PositionStore, RecentBooks
from reading.results import BookSummary, ReadingSettingsRecommendation, ThemeAnalysis
from reading.session import NO_CONTENT_MESSAGE, ReadingSession, SessionStatus
from tests.fakes import FakeDocumentStore, make_fragment


def scenario_fragments():
    return [
        make_fragment("h1", chapter="c1", title="Intro", content=["Welcome to the book."]),
        make_fragment("h2", chapter="c1", content=["More of the introduction."]),
        make_fragment("h3", chapter="c2", title="Body", content=["The main part."]),
    ]


class SessionTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.store = FakeDocumentStore()
        self.kv = JsonFileStore()
        self.ai = AsyncMock()
        self.store.add_book("b1", scenario_fragments(), title="The Book")

    def make_session(self, book_id="b1", position_store=None):
        return ReadingSession(
            book_id=book_id,
            loader=ContentLoader(self.store),
            position_store=position_store or PositionStore(self.kv),
            bookmark_manager=BookmarkManager(self.store),
            enrichment_client=self.ai,
            recent_books=RecentBooks(self.kv),
        )

    def mock_position_store(self, stored=None):
        positions = MagicMock()
        positions.load = AsyncMock(return_value=stored)
        positions.save = AsyncMock()
        return positions


class TestOpening(SessionTestCase):

    async def test_end_to_end_scenario(self):
        """Navigating and closing restores the chapter on the next open."""
        session = self.make_session()
        status = await session.open()

        self.assertEqual(status, SessionStatus.DISPLAYING_CONTENT)
        self.assertEqual(session.state.chapter_keys, ("c1", "c2"))
        self.assertEqual(session.state.chapter_index, 0)

        self.assertTrue(await session.go_to_chapter("c2"))
        self.assertEqual(session.state.chapter_index, 1)
        self.assertEqual(session.state.chapter_title, "Body")
        await session.close()

        restarted = self.make_session()
        await restarted.open()
        self.assertEqual(restarted.state.chapter_index, 1)
        self.assertEqual(restarted.state.chapter_id, "c2")

    async def test_state_progression(self):
        """Observers see both loading states before displaying."""
        seen = []
        session = self.make_session()
        session.subscribe(lambda state: seen.append(state.status))
        await session.open()

        self.assertEqual(seen[0], SessionStatus.LOADING_METADATA)
        self.assertIn(SessionStatus.LOADING_CONTENT, seen)
        self.assertEqual(seen[-1], SessionStatus.DISPLAYING_CONTENT)

    async def test_restored_position_is_clamped(self):
        """A stored chapter past the end is clamped."""
        positions = self.mock_position_store(stored=ReadingPosition(9, 0.3))
        session = self.make_session(position_store=positions)
        await session.open()
        self.assertEqual(session.state.chapter_index, 1)
        self.assertEqual(session.state.scroll_ratio, 0.3)

    async def test_corrupt_position_starts_at_beginning(self):
        """A corrupt stored position opens at the start."""
        self.kv.set_string("reading_progress_b1", "%%%")
        session = self.make_session()
        await session.open()
        self.assertEqual(session.state.status, SessionStatus.DISPLAYING_CONTENT)
        self.assertEqual(session.state.position, ReadingPosition(0, 0.0))

    async def test_empty_content_is_terminal_error(self):
        """A book without fragments ends in the no-content error."""
        self.store.add_book("empty", [])
        session = self.make_session("empty")
        status = await session.open()

        self.assertEqual(status, SessionStatus.ERROR)
        self.assertEqual(session.state.error_message, NO_CONTENT_MESSAGE)

    async def test_missing_book_is_error(self):
        """A missing book ends in error."""
        session = self.make_session("nope")
        await session.open()
        self.assertEqual(session.state.status, SessionStatus.ERROR)
        self.assertIn("nope", session.state.error_message)

    async def test_untyped_store_failure_becomes_error(self):
        """A raw store exception still ends in error."""
        self.store.fail_with["get_fragments"] = ConnectionResetError("reset")
        session = self.make_session()
        await session.open()
        self.assertEqual(session.state.status, SessionStatus.ERROR)

    async def test_unreadable_position_store_still_opens(self):
        """A position store that cannot be read opens the book at the start."""
        positions = self.mock_position_store()
        positions.load.side_effect = OSError("disk gone")
        session = self.make_session(position_store=positions)

        status = await session.open()
        self.assertEqual(status, SessionStatus.DISPLAYING_CONTENT)
        self.assertEqual(session.state.position, ReadingPosition(0, 0.0))

    async def test_unexpected_failure_ends_in_error_and_allows_reload(self):
        """An unexpected failure while loading leaves the session retryable."""
        positions = self.mock_position_store()
        positions.load.side_effect = RuntimeError("store exploded")
        session = self.make_session(position_store=positions)

        status = await session.open()
        self.assertEqual(status, SessionStatus.ERROR)
        self.assertEqual(session.state.error_message, "store exploded")

        positions.load.side_effect = None
        self.assertTrue(await session.reload())
        self.assertEqual(session.state.status, SessionStatus.DISPLAYING_CONTENT)

    async def test_bookmark_fetch_failure_is_not_fatal(self):
        """Bookmarks failing to load does not stop the book opening."""
        self.store.fail_with["get_bookmarks"] = TransportError("down")
        session = self.make_session()
        await session.open()
        self.assertEqual(session.state.status, SessionStatus.DISPLAYING_CONTENT)
        self.assertEqual(session.state.bookmarks, ())

    async def test_open_records_recent_book(self):
        """Opening a book records it in recent books."""
        await self.make_session().open()
        recent = RecentBooks(self.kv).list()
        self.assertEqual(recent[0].book_id, "b1")
        self.assertEqual(recent[0].total_chapters, 2)


class TestReload(SessionTestCase):

    async def test_reload_after_error(self):
        """reload() recovers from an error."""
        self.store.fail_with["get_book"] = TransportError("offline")
        session = self.make_session()
        await session.open()
        self.assertEqual(session.state.status, SessionStatus.ERROR)

        del self.store.fail_with["get_book"]
        self.assertTrue(await session.reload())
        self.assertEqual(session.state.status, SessionStatus.DISPLAYING_CONTENT)

    async def test_reload_refetches_content(self):
        """reload() fetches the fragments again."""
        session = self.make_session()
        await session.open()
        await session.reload()
        self.assertEqual(self.store.calls["get_fragments"], 2)

    async def test_reload_rejected_while_loading(self):
        """reload() is refused while a load is running."""
        release = asyncio.Event()
        original = self.store.get_book

        async def slow_get_book(book_id):
            await release.wait()
            return await original(book_id)

        self.store.get_book = slow_get_book
        session = self.make_session()
        opening = asyncio.create_task(session.open())
        await asyncio.sleep(0)

        self.assertEqual(session.state.status, SessionStatus.LOADING_METADATA)
        self.assertFalse(await session.reload())

        release.set()
        await opening
        self.assertEqual(session.state.status, SessionStatus.DISPLAYING_CONTENT)

    async def test_late_enrichment_result_is_dropped(self):
        """A result finishing after reload is discarded."""
        release = asyncio.Event()

        async def slow_summary(text, title, language):
            await release.wait()
            return BookSummary(summary="stale")

        self.ai.summarize = slow_summary
        session = self.make_session()
        await session.open()

        pending = asyncio.create_task(session.summarize())
        await asyncio.sleep(0)
        self.assertEqual(session.state.feature_status(Feature.SUMMARY), FeatureStatus.LOADING)

        await session.reload()
        release.set()

        self.assertIsNone(await pending)
        self.assertEqual(session.state.feature_status(Feature.SUMMARY), FeatureStatus.INITIAL)
        self.assertIsNone(session.state.feature_result(Feature.SUMMARY))


class TestNavigation(SessionTestCase):

    async def test_same_chapter_does_not_save(self):
        """Selecting the current chapter writes nothing."""
        positions = self.mock_position_store()
        session = self.make_session(position_store=positions)
        await session.open()

        self.assertFalse(await session.go_to_chapter(0))
        self.assertFalse(await session.go_to_chapter("c1"))
        positions.save.assert_not_called()

        self.assertTrue(await session.go_to_chapter(1))
        self.assertEqual(positions.save.await_count, 1)

    async def test_unknown_target_changes_nothing(self):
        """An unknown target leaves the position as it was."""
        positions = self.mock_position_store()
        session = self.make_session(position_store=positions)
        await session.open()

        self.assertFalse(await session.go_to_chapter("missing"))
        self.assertFalse(await session.go_to_chapter(5))
        self.assertEqual(session.state.chapter_index, 0)
        positions.save.assert_not_called()

    async def test_numeral_targets(self):
        """A numeral target moves to that chapter."""
        session = self.make_session()
        await session.open()
        self.assertTrue(await session.go_to_chapter("2"))
        self.assertEqual(session.state.chapter_index, 1)

    async def test_next_previous_and_fragment(self):
        """Next and previous stop at the ends; fragments find their chapter."""
        session = self.make_session()
        await session.open()

        self.assertFalse(await session.previous_chapter())
        self.assertTrue(await session.next_chapter())
        self.assertFalse(await session.next_chapter())
        self.assertTrue(await session.go_to_fragment("h2"))
        self.assertEqual(session.state.chapter_id, "c1")

    async def test_chapter_change_resets_scroll(self):
        """Changing chapter resets the scroll."""
        session = self.make_session()
        await session.open()
        await session.update_scroll(0.7)
        await session.go_to_chapter(1)
        self.assertEqual(session.state.scroll_ratio, 0.0)

    async def test_scroll_saves_are_throttled(self):
        """Small scroll moves are not saved."""
        positions = self.mock_position_store()
        session = self.make_session(position_store=positions)
        await session.open()

        self.assertTrue(await session.update_scroll(0.10))
        self.assertFalse(await session.update_scroll(0.12))
        self.assertFalse(await session.update_scroll(0.14))
        self.assertTrue(await session.update_scroll(0.30))
        self.assertEqual(positions.save.await_count, 2)
        self.assertEqual(session.state.scroll_ratio, 0.30)

    async def test_operations_rejected_before_open(self):
        """Nothing runs before the book is displayed."""
        session = self.make_session()
        self.assertFalse(await session.go_to_chapter(1))
        self.assertFalse(await session.update_scroll(0.5))
        self.assertIsNone(await session.toggle_bookmark("h1"))
        self.assertIsNone(await session.summarize())
        self.ai.summarize.assert_not_called()

    async def test_close_saves_final_position(self):
        """close() saves once more and stops navigation."""
        positions = self.mock_position_store()
        session = self.make_session(position_store=positions)
        await session.open()
        await session.update_scroll(0.5)
        saves = positions.save.await_count

        await session.close()
        self.assertEqual(positions.save.await_count, saves + 1)
        self.assertFalse(await session.go_to_chapter(1))


class TestSessionBookmarks(SessionTestCase):

    async def test_toggle_updates_state(self):
        """Toggling a bookmark updates the session state."""
        session = self.make_session()
        await session.open()

        self.assertTrue(await session.toggle_bookmark("h3"))
        self.assertEqual([b.heading_id for b in session.state.bookmarks], ["h3"])
        self.assertEqual(session.state.bookmarks[0].chapter_title, "Body")
        self.assertTrue(session.is_bookmarked("h3"))

        self.assertFalse(await session.toggle_bookmark("h3"))
        self.assertEqual(session.state.bookmarks, ())

    async def test_unknown_fragment(self):
        """Bookmarking an unknown fragment returns None."""
        session = self.make_session()
        await session.open()
        self.assertIsNone(await session.toggle_bookmark("nope"))

    async def test_failed_write_leaves_state(self):
        """A failed bookmark write leaves the state unchanged."""
        session = self.make_session()
        await session.open()
        self.store.fail_with["add_bookmark"] = TransportError("down")

        self.assertIsNone(await session.toggle_bookmark("h1"))
        self.assertEqual(session.state.bookmarks, ())
        self.assertEqual(session.state.status, SessionStatus.DISPLAYING_CONTENT)


class TestSessionEnrichment(SessionTestCase):

    async def test_summary_ready_and_cached(self):
        """A summary is computed once and then reused."""
        self.ai.summarize.return_value = BookSummary(summary="A short book.")
        session = self.make_session()
        await session.open()

        result = await session.summarize()
        self.assertEqual(result.summary, "A short book.")
        self.assertEqual(session.state.feature_status("summary"), FeatureStatus.READY)
        self.assertIs(session.state.feature_result(Feature.SUMMARY), result)

        await session.summarize()
        self.assertEqual(self.ai.summarize.await_count, 1)

    async def test_summary_text_is_truncated(self):
        """Summary input is cut to its limit."""
        long_text = "word " * 3000
        self.store.add_book("long", [make_fragment("f1", chapter="c", content=[long_text])])
        self.ai.summarize.return_value = BookSummary(summary="s")
        session = self.make_session("long")
        await session.open()
        await session.summarize()

        text, title, language = self.ai.summarize.await_args.args
        self.assertEqual(len(text), 5000)
        self.assertEqual(language, "en")

    async def test_summary_falls_back_to_title(self):
        """An empty book is summarized from its title."""
        self.store.add_book("blank", [make_fragment("f1", chapter="c", content=[])], title="Blank")
        self.ai.summarize.return_value = BookSummary(summary="s")
        session = self.make_session("blank")
        await session.open()
        await session.summarize()
        self.assertEqual(self.ai.summarize.await_args.args[0], "Blank")

    async def test_failure_is_feature_scoped(self):
        """A failed feature does not affect reading."""
        self.ai.analyze_themes.side_effect = EnrichmentError("bad json", "themes")
        session = self.make_session()
        await session.open()

        self.assertIsNone(await session.analyze_themes())
        self.assertEqual(session.state.feature_status(Feature.THEMES), FeatureStatus.ERROR)
        self.assertEqual(session.state.status, SessionStatus.DISPLAYING_CONTENT)
        self.assertTrue(await session.go_to_chapter(1))

    async def test_settings_sample_uses_leading_fragments(self):
        """Settings are recommended from the opening fragments."""
        self.ai.recommend_settings.return_value = ReadingSettingsRecommendation()
        session = self.make_session()
        await session.open()
        await session.recommend_settings()

        sample, language = self.ai.recommend_settings.await_args.args
        self.assertEqual(sample, "Welcome to the book.\n\nMore of the introduction.")

    async def test_vocabulary_defaults_to_current_chapter(self):
        """Vocabulary uses the current chapter text by default."""
        self.ai.explain_vocabulary.return_value = MagicMock(is_empty=lambda: False)
        session = self.make_session()
        await session.open()
        await session.go_to_chapter(1)
        await session.analyze_vocabulary()
        self.assertEqual(self.ai.explain_vocabulary.await_args.args[0], "The main part.")

    async def test_speech_sets_speaking_flag(self):
        """Speech markers set the speaking flag until stopped."""
        self.ai.speech_markers.return_value = MagicMock(is_empty=lambda: False)
        session = self.make_session()
        await session.open()

        await session.generate_speech_markers("Read this aloud.")
        self.assertTrue(session.state.is_speaking)
        session.stop_speaking()
        self.assertFalse(session.state.is_speaking)

    async def test_translation_always_recomputes(self):
        """Each translation calls the client."""
        self.ai.translate.return_value = MagicMock(is_empty=lambda: False)
        session = self.make_session()
        await session.open()
        await session.translate("hello", "fr")
        await session.translate("goodbye", "fr")
        self.assertEqual(self.ai.translate.await_count, 2)

    async def test_clear_feature(self):
        """A cleared feature goes back to initial."""
        self.ai.analyze_themes.return_value = ThemeAnalysis(concepts=["duty"])
        session = self.make_session()
        await session.open()
        await session.analyze_themes()

        self.assertTrue(session.clear_feature(Feature.THEMES))
        self.assertEqual(session.state.feature_status(Feature.THEMES), FeatureStatus.INITIAL)

    async def test_failing_listener_does_not_break_session(self):
        """A listener raising does not break opening."""
        def broken(state):
            raise ValueError("listener bug")

        session = self.make_session()
        session.subscribe(broken)
        await session.open()
        self.assertEqual(session.state.status, SessionStatus.DISPLAYING_CONTENT)

    async def test_unsubscribe(self):
        """An unsubscribed listener gets nothing."""
        seen = []
        session = self.make_session()
        unsubscribe = session.subscribe(seen.append)
        unsubscribe()
        await session.open()
        self.assertEqual(seen, [])


if __name__ == "__main__":
    unittest.main()
