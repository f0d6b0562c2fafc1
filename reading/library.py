"""
Folio - Local Library
A DocumentStore over a directory of plain-text books.

Each <book_id>.txt file is one book. Structure is detected from heading
lines:
    - Chapters: "Chapter N", "Interlude", "Prologue", "Epilogue"
    - Volumes: "Part N", "Book N", "Arc N" (containers for chapters)
    - Back matter: "Glossary", "Appendix", ... (cut off after the last chapter)

When no markers are found the text is split into segments at paragraph
boundaries. Every chapter becomes one or more fragments, split at paragraph
boundaries once a fragment reaches LIBRARY_FRAGMENT_MAX_CHARS.

Bookmarks live in the key-value store under bookmarks_{book_id}.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import config
from core.kv_store import KeyValueStore
from core.logger import log_info, log_warning
from reading.errors import NotFoundError, TransportError
from reading.models import Book, Bookmark, Fragment


BOOKMARKS_KEY_PREFIX = "bookmarks_"

_TITLE_TAIL = r'(?:\s*[:\-–—]\s*.+)?'

CHAPTER_PATTERNS = [
    re.compile(rf'^(Chapter\s+\w+{_TITLE_TAIL})\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(rf'^(Interlude{_TITLE_TAIL})\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(rf'^(Prologue{_TITLE_TAIL})\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(rf'^(Epilogue{_TITLE_TAIL})\s*$', re.IGNORECASE | re.MULTILINE),
]

VOLUME_PATTERNS = [
    re.compile(rf'^(Part\s+\w+{_TITLE_TAIL})\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(rf'^(Book\s+\w+{_TITLE_TAIL})\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(rf'^(Arc\s+\w+{_TITLE_TAIL})\s*$', re.IGNORECASE | re.MULTILINE),
]

BACKMATTER_PATTERNS = [
    re.compile(rf'^(Glossary{_TITLE_TAIL})\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(rf'^(Appendix{_TITLE_TAIL})\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(rf'^(Acknowledge?ments?{_TITLE_TAIL})\s*$', re.IGNORECASE | re.MULTILINE),
    re.compile(r'^(About the Author)\s*$', re.IGNORECASE | re.MULTILINE),
]

_PARAGRAPH_SPLIT = re.compile(r'\n\s*\n')


@dataclass
class TextUnit:
    """A detected reading unit before it is cut into fragments."""
    title: str
    body: str
    chapter_id: Optional[str] = None
    volume_id: Optional[str] = None
    paragraphs: List[str] = field(default_factory=list)


def _find_markers(patterns: List[re.Pattern], text: str) -> List[Tuple[int, str]]:
    markers = []
    for pattern in patterns:
        for match in pattern.finditer(text):
            markers.append((match.start(), match.group(1).strip()))
    markers.sort(key=lambda m: m[0])

    # Overlapping patterns can hit the same heading twice
    deduped: List[Tuple[int, str]] = []
    for pos, title in markers:
        if not deduped or pos - deduped[-1][0] > 50:
            deduped.append((pos, title))
    return deduped


def split_paragraphs(text: str) -> List[str]:
    """Non-empty paragraphs, whitespace-collapsed inside each paragraph."""
    paragraphs = []
    for block in _PARAGRAPH_SPLIT.split(text):
        cleaned = " ".join(block.split())
        if cleaned:
            paragraphs.append(cleaned)
    return paragraphs


def pack_paragraphs(paragraphs: List[str], max_chars: int) -> List[List[str]]:
    """
    Group paragraphs into runs of at most max_chars characters.

    A single paragraph longer than max_chars gets a run of its own.
    """
    groups: List[List[str]] = []
    current: List[str] = []
    size = 0
    for paragraph in paragraphs:
        if current and size + len(paragraph) > max_chars:
            groups.append(current)
            current, size = [], 0
        current.append(paragraph)
        size += len(paragraph)
    if current:
        groups.append(current)
    return groups


def _body_after_heading(text: str, pos: int, end: int) -> str:
    line_end = text.find('\n', pos)
    start = end if line_end == -1 or line_end > end else line_end + 1
    return text[start:end]


def detect_units(text: str) -> Tuple[List[TextUnit], str]:
    """
    Split a book's text into reading units.

    Returns:
        (units, detection_method)
    """
    chapter_markers = _find_markers(CHAPTER_PATTERNS, text)
    volume_markers = _find_markers(VOLUME_PATTERNS, text)

    content_end = len(text)
    last_heading = max(
        [pos for pos, _ in chapter_markers] + [pos for pos, _ in volume_markers],
        default=0,
    )
    for pos, _ in _find_markers(BACKMATTER_PATTERNS, text):
        if pos > last_heading:
            content_end = pos
            break

    units: List[TextUnit] = []

    if chapter_markers:
        # Volume headings also end the chapter before them
        boundaries = sorted(
            [pos for pos, _ in chapter_markers] + [pos for pos, _ in volume_markers]
        )
        for number, (pos, title) in enumerate(chapter_markers, start=1):
            end = next((b for b in boundaries if b > pos), content_end)
            end = min(end, content_end)

            volume_id = None
            for volume_number, (volume_pos, _) in enumerate(volume_markers, start=1):
                if volume_pos < pos:
                    volume_id = f"vol{volume_number}"

            units.append(TextUnit(
                title=title,
                body=_body_after_heading(text, pos, end),
                chapter_id=f"ch{number}",
                volume_id=volume_id,
            ))
        method = "chapter markers"
        if volume_markers:
            method += f" + {len(volume_markers)} volume(s)"

    elif volume_markers:
        for number, (pos, title) in enumerate(volume_markers, start=1):
            end = volume_markers[number][0] if number < len(volume_markers) else content_end
            units.append(TextUnit(
                title=title,
                body=_body_after_heading(text, pos, min(end, content_end)),
                volume_id=f"vol{number}",
            ))
        method = "volume markers"

    else:
        paragraphs = split_paragraphs(text[:content_end])
        groups = pack_paragraphs(paragraphs, config.LIBRARY_SEGMENT_MAX_CHARS)
        for number, group in enumerate(groups, start=1):
            units.append(TextUnit(
                title=f"Segment {number}",
                body="",
                chapter_id=f"seg{number}",
                paragraphs=group,
            ))
        method = "paragraph segments"

    for unit in units:
        if not unit.paragraphs:
            unit.paragraphs = split_paragraphs(unit.body)

    return units, method


def build_fragments(book_id: str, units: List[TextUnit]) -> List[Fragment]:
    """Cut units into ordered fragments. The first fragment of a unit carries its title."""
    fragments: List[Fragment] = []
    for unit in units:
        groups = pack_paragraphs(unit.paragraphs, config.LIBRARY_FRAGMENT_MAX_CHARS) or [[]]
        for part, paragraphs in enumerate(groups):
            order = len(fragments) + 1
            fragments.append(Fragment(
                fragment_id=f"{book_id}-{order}",
                order=order,
                chapter_id=unit.chapter_id,
                volume_id=unit.volume_id,
                title=unit.title if part == 0 else None,
                content=list(paragraphs),
            ))
    return fragments


def title_from_stem(stem: str) -> str:
    return stem.replace('_', ' ').replace('-', ' ').title()


class LocalLibraryStore:
    """DocumentStore for <books_dir>/<book_id>.txt files."""

    def __init__(self, books_dir: Path, kv: KeyValueStore):
        self.books_dir = Path(books_dir)
        self._kv = kv

    def book_path(self, book_id: str) -> Path:
        return self.books_dir / f"{book_id}.txt"

    def list_books(self) -> List[str]:
        """Ids of every book in the library, sorted."""
        if not self.books_dir.exists():
            return []
        return sorted(p.stem for p in self.books_dir.glob("*.txt"))

    async def _read(self, book_id: str) -> str:
        path = self.book_path(book_id)
        if not path.is_file():
            raise NotFoundError(f"Book '{book_id}' not found in {self.books_dir}", book_id=book_id)
        try:
            return await asyncio.to_thread(path.read_text, encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise TransportError(f"Could not read '{path.name}': {e}", book_id=book_id) from e

    async def get_book(self, book_id: str) -> Book:
        path = self.book_path(book_id)
        if not path.is_file():
            raise NotFoundError(f"Book '{book_id}' not found in {self.books_dir}", book_id=book_id)
        return Book(
            book_id=book_id,
            title=title_from_stem(book_id),
            language_code=config.LIBRARY_DEFAULT_LANGUAGE,
            content_type="book",
        )

    async def get_fragments(self, book_id: str) -> List[Fragment]:
        text = await self._read(book_id)
        units, method = detect_units(text)
        fragments = build_fragments(book_id, units)

        if method == "paragraph segments":
            log_warning(
                f"No chapter markers detected in '{book_id}'. "
                f"Split into {len(units)} segments at paragraph boundaries."
            )
        log_info(
            f"Parsed '{book_id}': {len(units)} units, {len(fragments)} fragments, "
            f"method: {method}",
            prefix="📖"
        )
        return fragments

    # =========================================================================
    # BOOKMARKS
    # =========================================================================

    def _bookmarks_key(self, book_id: str) -> str:
        return f"{BOOKMARKS_KEY_PREFIX}{book_id}"

    def _read_bookmarks(self, book_id: str) -> List[Bookmark]:
        key = self._bookmarks_key(book_id)
        raw = self._kv.get_string(key)
        if raw is None:
            return []
        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError("not a list")
            return [Bookmark.from_dict(item) for item in items]
        except (ValueError, KeyError, TypeError) as e:
            log_warning(f"Bookmarks for '{book_id}' are corrupted ({e}), resetting them")
            self._kv.remove(key)
            return []

    def _write_bookmarks(self, book_id: str, bookmarks: List[Bookmark]) -> None:
        self._kv.set_string(
            self._bookmarks_key(book_id),
            json.dumps([b.to_dict() for b in bookmarks]),
        )

    async def get_bookmarks(self, book_id: str) -> List[Bookmark]:
        bookmarks = self._read_bookmarks(book_id)
        bookmarks.sort(key=lambda b: b.created_at, reverse=True)
        return bookmarks

    async def add_bookmark(self, bookmark: Bookmark) -> None:
        bookmarks = [
            b for b in self._read_bookmarks(bookmark.book_id)
            if b.heading_id != bookmark.heading_id
        ]
        bookmarks.append(bookmark)
        self._write_bookmarks(bookmark.book_id, bookmarks)

    async def remove_bookmark(self, book_id: str, bookmark_id: str) -> None:
        bookmarks = self._read_bookmarks(book_id)
        kept = [b for b in bookmarks if b.bookmark_id != bookmark_id]
        if len(kept) != len(bookmarks):
            self._write_bookmarks(book_id, kept)
