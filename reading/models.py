"""
Folio - Reading Data Model
Plain data types shared by the loader, mapper, stores and session.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


DEFAULT_CHAPTER_KEY = "default_chapter"


def _optional_str(value: Any) -> Optional[str]:
    """Store ids may arrive as ints; chapter keys are always strings."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Book:
    """Book metadata. Immutable once loaded."""
    book_id: str
    title: str
    language_code: str = "en"
    content_type: str = "book"
    author: Optional[str] = None
    cover_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Book":
        """Build a Book from a document-store record."""
        book_id = _optional_str(data.get("id") or data.get("bookId"))
        if book_id is None:
            raise ValueError("book record has no id")
        return cls(
            book_id=book_id,
            title=str(data.get("title") or book_id),
            language_code=str(data.get("languageCode") or data.get("language") or "en"),
            content_type=str(data.get("type") or data.get("contentType") or "book"),
            author=_optional_str(data.get("author")),
            cover_url=_optional_str(data.get("coverUrl") or data.get("thumbnailUrl")),
        )


@dataclass(frozen=True)
class Fragment:
    """
    One content fragment ("heading") of a book.

    Fragments arrive ordered from the store and keep that order.
    chapter_id / volume_id name the chapter the fragment belongs to.
    """
    fragment_id: str
    order: Optional[int] = None
    chapter_id: Optional[str] = None
    volume_id: Optional[str] = None
    title: Optional[str] = None
    content: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        """All paragraphs joined by newlines."""
        return "\n".join(self.content)

    @property
    def first_paragraph(self) -> str:
        for paragraph in self.content:
            if paragraph.strip():
                return paragraph.strip()
        return ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fragment":
        """Build a Fragment from a document-store record."""
        fragment_id = _optional_str(
            data.get("fragmentId") or data.get("firestoreDocId") or data.get("id")
        )
        if fragment_id is None:
            raise ValueError("fragment record has no id")

        order = data.get("order", data.get("sequence"))
        try:
            order = int(order) if order is not None else None
        except (TypeError, ValueError):
            order = None

        content = data.get("content") or []
        if isinstance(content, str):
            content = [content]

        return cls(
            fragment_id=fragment_id,
            order=order,
            chapter_id=_optional_str(data.get("chapterId")),
            volume_id=_optional_str(data.get("volumeId")),
            title=_optional_str(data.get("title")),
            content=[str(p) for p in content],
        )


@dataclass(frozen=True)
class ReadingPosition:
    """Where the reader is: a chapter index and a scroll ratio inside it."""
    chapter_index: int = 0
    scroll_ratio: float = 0.0

    def clamped(self, chapter_count: int) -> "ReadingPosition":
        """Clamp the chapter index to the book and the ratio to [0, 1]."""
        upper = max(chapter_count - 1, 0)
        return ReadingPosition(
            chapter_index=min(max(self.chapter_index, 0), upper),
            scroll_ratio=min(max(self.scroll_ratio, 0.0), 1.0),
        )


@dataclass(frozen=True)
class Bookmark:
    """A user bookmark on one fragment. bookmark_id equals the fragment id."""
    bookmark_id: str
    book_id: str
    chapter_id: str
    chapter_title: str
    heading_id: str
    heading_title: Optional[str]
    created_at: datetime
    text_snippet: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.heading_title:
            return self.heading_title
        return self.chapter_title

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.bookmark_id,
            "bookId": self.book_id,
            "chapterId": self.chapter_id,
            "chapterTitle": self.chapter_title,
            "headingId": self.heading_id,
            "headingTitle": self.heading_title,
            "timestamp": int(self.created_at.timestamp() * 1000),
            "textContentSnippet": self.text_snippet,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bookmark":
        heading_id = str(data.get("headingId") or data["id"])
        return cls(
            bookmark_id=str(data["id"]),
            book_id=str(data["bookId"]),
            chapter_id=str(data["chapterId"]),
            chapter_title=str(data.get("chapterTitle") or ""),
            heading_id=heading_id,
            heading_title=data.get("headingTitle"),
            created_at=datetime.fromtimestamp(int(data.get("timestamp", 0)) / 1000),
            text_snippet=data.get("textContentSnippet"),
        )


@dataclass
class RecentBook:
    """An entry in the recently-read list."""
    book_id: str
    title: str
    author: Optional[str] = None
    cover_url: Optional[str] = None
    progress: float = 0.0
    last_read_time: int = 0  # epoch milliseconds
    current_chapter: int = 0
    total_chapters: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.book_id,
            "title": self.title,
            "author": self.author,
            "coverUrl": self.cover_url,
            "progress": self.progress,
            "lastReadTime": self.last_read_time,
            "currentPage": self.current_chapter,
            "totalPages": self.total_chapters,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecentBook":
        return cls(
            book_id=str(data["id"]),
            title=str(data.get("title") or data["id"]),
            author=data.get("author"),
            cover_url=data.get("coverUrl"),
            progress=float(data.get("progress") or 0.0),
            last_read_time=int(data.get("lastReadTime") or 0),
            current_chapter=int(data.get("currentPage") or 0),
            total_chapters=int(data.get("totalPages") or 0),
        )
