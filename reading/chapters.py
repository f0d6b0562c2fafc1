"""
Folio - Chapter Mapper
Groups an ordered list of fragments into logical chapters.

A chapter's position is decided by where its first fragment appears.
There is no explicit chapter index anywhere in the data: the list of
first-seen chapter keys, in fragment order, is the chapter sequence.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from reading.errors import ChapterNotFound
from reading.models import DEFAULT_CHAPTER_KEY, Fragment


def chapter_key_for(fragment: Fragment) -> str:
    """
    Chapter key of a fragment.

    Precedence: chapter_id, then volume_id, then "default_chapter".
    """
    if fragment.chapter_id is not None:
        return fragment.chapter_id
    if fragment.volume_id is not None:
        return fragment.volume_id
    return DEFAULT_CHAPTER_KEY


@dataclass
class ChapterMap:
    """Chapters derived from a fragment list, with lookups both ways."""
    chapter_keys: List[str] = field(default_factory=list)
    grouped: Dict[str, List[Fragment]] = field(default_factory=dict)
    key_to_index: Dict[str, int] = field(default_factory=dict)
    fragment_to_index: Dict[str, int] = field(default_factory=dict)
    fragment_to_key: Dict[str, str] = field(default_factory=dict)

    @property
    def chapter_count(self) -> int:
        return len(self.chapter_keys)

    @property
    def is_empty(self) -> bool:
        return not self.chapter_keys

    def key_at(self, index: int) -> str:
        return self.chapter_keys[index]

    def fragments_for(self, index: int) -> List[Fragment]:
        """Fragments of the chapter at index, in store order."""
        return self.grouped[self.chapter_keys[index]]

    def title_for(self, index: int) -> str:
        """First titled fragment of the chapter, else the chapter key."""
        for fragment in self.fragments_for(index):
            if fragment.title:
                return fragment.title
        return self.chapter_keys[index]

    def text_for(self, index: int) -> str:
        return "\n\n".join(f.text for f in self.fragments_for(index))

    def full_text(self) -> str:
        """Concatenated text of every fragment in chapter order."""
        return "\n\n".join(
            fragment.text
            for key in self.chapter_keys
            for fragment in self.grouped[key]
        )

    def find_fragment(self, fragment_id: str) -> Optional[Fragment]:
        key = self.fragment_to_key.get(fragment_id)
        if key is None:
            return None
        for fragment in self.grouped[key]:
            if fragment.fragment_id == fragment_id:
                return fragment
        return None

    def resolve_index(self, target: Union[str, int]) -> int:
        """
        Resolve a navigation target to a chapter index.

        Order of attempts:
            1. exact chapter key
            2. integer numeral: 1-based if it fits, else 0-based if it fits
            3. fragment id

        Raises:
            ChapterNotFound: nothing matched
        """
        text = str(target).strip()

        index = self.key_to_index.get(text)
        if index is not None:
            return index

        try:
            number = int(text)
        except ValueError:
            number = None

        if number is not None:
            count = self.chapter_count
            if 1 <= number <= count:
                return number - 1
            if 0 <= number < count:
                return number

        index = self.fragment_to_index.get(text)
        if index is not None:
            return index
        raise ChapterNotFound(text)


def derive_chapters(fragments: List[Fragment]) -> ChapterMap:
    """
    Build the chapter map in one pass over the fragments.

    Deterministic: the same fragment list always yields the same map.
    An empty list yields an empty map.
    """
    chapter_map = ChapterMap()

    for fragment in fragments:
        key = chapter_key_for(fragment)
        if key not in chapter_map.grouped:
            chapter_map.key_to_index[key] = len(chapter_map.chapter_keys)
            chapter_map.chapter_keys.append(key)
            chapter_map.grouped[key] = []
        chapter_map.grouped[key].append(fragment)

        index = chapter_map.key_to_index[key]
        chapter_map.fragment_to_index[fragment.fragment_id] = index
        chapter_map.fragment_to_key[fragment.fragment_id] = key

    return chapter_map
