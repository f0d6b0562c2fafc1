"""
Tests for chapter derivation and navigation target resolution.
"""

import unittest

from reading.chapters import chapter_key_for, derive_chapters
from reading.errors import ChapterNotFound
from reading.models import DEFAULT_CHAPTER_KEY, Fragment
from tests.fakes import make_fragment


class TestChapterKey(unittest.TestCase):
    """chapter_id wins over volume_id, which wins over the default key."""

    def test_chapter_id_first(self):
        """chapter_id is used when present."""
        fragment = make_fragment("f1", chapter="c1", volume="v1")
        self.assertEqual(chapter_key_for(fragment), "c1")

    def test_volume_id_when_no_chapter(self):
        """volume_id is used without a chapter_id."""
        fragment = make_fragment("f1", volume="v1")
        self.assertEqual(chapter_key_for(fragment), "v1")

    def test_default_key(self):
        """Fragments with neither id share the default chapter."""
        self.assertEqual(chapter_key_for(make_fragment("f1")), DEFAULT_CHAPTER_KEY)

    def test_numeric_ids_from_store_become_strings(self):
        """Numeric store ids are normalized to strings."""
        fragment = Fragment.from_dict({"id": 7, "chapterId": 3, "content": "One paragraph"})
        self.assertEqual(fragment.fragment_id, "7")
        self.assertEqual(chapter_key_for(fragment), "3")
        self.assertEqual(fragment.content, ["One paragraph"])


class TestDeriveChapters(unittest.TestCase):
    """Chapter order is the order of first appearance."""

    def test_first_seen_order(self):
        """Chapters are ordered by their first fragment."""
        fragments = [
            make_fragment("f1", chapter="A"),
            make_fragment("f2", chapter="B"),
            make_fragment("f3", chapter="A"),
        ]
        chapter_map = derive_chapters(fragments)

        self.assertEqual(chapter_map.chapter_keys, ["A", "B"])
        self.assertEqual([f.fragment_id for f in chapter_map.grouped["A"]], ["f1", "f3"])
        self.assertEqual(chapter_map.fragment_to_index["f3"], 0)

    def test_reordering_inside_a_chapter_keeps_keys(self):
        """Shuffling fragments within a chapter keeps chapter order."""
        a1 = make_fragment("a1", chapter="A")
        a2 = make_fragment("a2", chapter="A")
        b1 = make_fragment("b1", chapter="B")

        first = derive_chapters([a1, a2, b1])
        second = derive_chapters([a2, a1, b1])
        self.assertEqual(first.chapter_keys, second.chapter_keys)

    def test_moving_fragment_before_first_occurrence_changes_order(self):
        """Moving a fragment ahead of its chapter's first one reorders chapters."""
        a1 = make_fragment("a1", chapter="A")
        b1 = make_fragment("b1", chapter="B")
        b2 = make_fragment("b2", chapter="B")

        self.assertEqual(derive_chapters([a1, b1, b2]).chapter_keys, ["A", "B"])
        self.assertEqual(derive_chapters([b2, a1, b1]).chapter_keys, ["B", "A"])

    def test_empty_list(self):
        """No fragments gives an empty map."""
        chapter_map = derive_chapters([])
        self.assertTrue(chapter_map.is_empty)
        self.assertEqual(chapter_map.chapter_keys, [])
        self.assertEqual(chapter_map.grouped, {})

    def test_deterministic(self):
        """The same input always gives the same map."""
        fragments = [
            make_fragment("f1", chapter="x"),
            make_fragment("f2", volume="v"),
            make_fragment("f3"),
        ]
        self.assertEqual(derive_chapters(fragments), derive_chapters(list(fragments)))

    def test_title_and_text_helpers(self):
        """Titles fall back to the key and text joins paragraphs."""
        fragments = [
            make_fragment("h1", chapter="c1", content=["one"]),
            make_fragment("h2", chapter="c1", title="Intro", content=["two"]),
            make_fragment("h3", chapter="c2", content=["three"]),
        ]
        chapter_map = derive_chapters(fragments)

        self.assertEqual(chapter_map.title_for(0), "Intro")
        self.assertEqual(chapter_map.title_for(1), "c2")
        self.assertEqual(chapter_map.text_for(0), "one\n\ntwo")
        self.assertEqual(chapter_map.full_text(), "one\n\ntwo\n\nthree")
        self.assertEqual(chapter_map.find_fragment("h2").title, "Intro")
        self.assertIsNone(chapter_map.find_fragment("missing"))


class TestResolveIndex(unittest.TestCase):
    """Navigation target resolution."""

    def setUp(self):
        self.chapter_map = derive_chapters([
            make_fragment("h1", chapter="x"),
            make_fragment("h2", chapter="y"),
            make_fragment("h3", chapter="z"),
        ])

    def test_exact_key(self):
        """A chapter key resolves directly."""
        self.assertEqual(self.chapter_map.resolve_index("y"), 1)

    def test_fragment_id(self):
        """A fragment id resolves to its chapter."""
        self.assertEqual(self.chapter_map.resolve_index("h3"), 2)

    def test_numeral_one_is_first_chapter(self):
        """Numeral 1 means the first chapter."""
        self.assertEqual(self.chapter_map.resolve_index("1"), 0)

    def test_numeral_three_is_last_chapter(self):
        """Numeral 3 means the third chapter."""
        self.assertEqual(self.chapter_map.resolve_index("3"), 2)

    def test_zero_falls_back_to_zero_based(self):
        """Numeral 0 is read as a 0-based index."""
        self.assertEqual(self.chapter_map.resolve_index("0"), 0)

    def test_out_of_range_numeral(self):
        """A numeral past the end is not found."""
        with self.assertRaises(ChapterNotFound):
            self.chapter_map.resolve_index("5")

    def test_unknown_text(self):
        """Unmatched text raises ChapterNotFound with the target."""
        with self.assertRaises(ChapterNotFound) as ctx:
            self.chapter_map.resolve_index("nope")
        self.assertEqual(ctx.exception.target, "nope")

    def test_key_beats_numeral(self):
        """A chapter key that looks like a number wins over the numeral."""
        chapter_map = derive_chapters([
            make_fragment("f1", chapter="2"),
            make_fragment("f2", chapter="1"),
        ])
        self.assertEqual(chapter_map.resolve_index("1"), 1)

    def test_numeral_beats_numeric_fragment_id(self):
        """A numeral means a chapter even when a fragment carries the same id."""
        chapter_map = derive_chapters([
            Fragment.from_dict({"id": 1, "chapterId": "intro"}),
            Fragment.from_dict({"id": 2, "chapterId": "intro"}),
            Fragment.from_dict({"id": 3, "chapterId": "body"}),
        ])
        self.assertEqual(chapter_map.resolve_index("2"), 1)

    def test_numeric_fragment_id_beyond_chapter_count(self):
        """A numeric id too large to be a chapter numeral still finds its fragment."""
        chapter_map = derive_chapters([
            Fragment.from_dict({"id": 10, "chapterId": "intro"}),
            Fragment.from_dict({"id": 11, "chapterId": "body"}),
        ])
        self.assertEqual(chapter_map.resolve_index("11"), 1)


if __name__ == "__main__":
    unittest.main()
