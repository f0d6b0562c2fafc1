"""
Folio - Reading Progress
Per-book position persistence, scroll-save throttling and the recent-books list.

Each book's position is one JSON record under reading_progress_{book_id}
in the shared key-value store. Saves always overwrite the whole record,
so when several saves race only the last one to land matters.
"""

import asyncio
import json
from datetime import datetime
from typing import List, Optional

import config
from core.kv_store import KeyValueStore
from core.logger import log_info, log_warning
from reading.errors import PersistenceCorruption
from reading.models import ReadingPosition, RecentBook


PROGRESS_KEY_PREFIX = "reading_progress_"
RECENT_BOOKS_KEY = "recentBooks"


def progress_key(book_id: str) -> str:
    return f"{PROGRESS_KEY_PREFIX}{book_id}"


def book_progress(position: ReadingPosition, total_chapters: int) -> float:
    """Whole-book progress: finished chapters plus the current chapter's scroll."""
    if total_chapters <= 0:
        return position.scroll_ratio
    overall = (position.chapter_index + position.scroll_ratio) / total_chapters
    return min(max(overall, 0.0), 1.0)


class PositionStore:
    """
    Durable reading position per book.

    Writes go to a worker thread so a slow disk does not block the event loop.
    """

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    async def save(
        self,
        book_id: str,
        position: ReadingPosition,
        *,
        book_title: Optional[str] = None,
        total_chapters: Optional[int] = None,
    ) -> None:
        """Overwrite the stored position for book_id."""
        total = total_chapters or 0
        record = {
            "bookId": book_id,
            "bookTitle": book_title,
            "currentChapter": position.chapter_index,
            "totalChapters": total,
            "percentage": round(book_progress(position, total) * 100) if total else 0,
            "lastReadTimestamp": datetime.now().isoformat(),
            "fineGrainPercentage": position.scroll_ratio,
        }
        await asyncio.to_thread(self._kv.set_string, progress_key(book_id), json.dumps(record))

    async def load(self, book_id: str) -> Optional[ReadingPosition]:
        """
        Load the stored position.

        Returns None when nothing was saved. A record that cannot be decoded
        is deleted and the default position is returned instead.
        """
        key = progress_key(book_id)
        raw = self._kv.get_string(key)
        if raw is None:
            return None

        try:
            return self._decode(key, raw)
        except PersistenceCorruption as e:
            log_warning(f"{e}. Removing it and starting from the beginning.")
            await asyncio.to_thread(self._kv.remove, key)
            return ReadingPosition()

    async def delete(self, book_id: str) -> None:
        await asyncio.to_thread(self._kv.remove, progress_key(book_id))

    @staticmethod
    def _decode(key: str, raw: str) -> ReadingPosition:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise PersistenceCorruption(key, f"invalid JSON ({e.msg})") from e

        if not isinstance(data, dict):
            raise PersistenceCorruption(key, "record is not an object")

        chapter = data.get("currentChapter", 0)
        scroll = data.get("fineGrainPercentage", 0.0)
        if isinstance(chapter, bool) or not isinstance(chapter, int):
            raise PersistenceCorruption(key, f"bad chapter index {chapter!r}")
        if isinstance(scroll, bool) or not isinstance(scroll, (int, float)):
            raise PersistenceCorruption(key, f"bad scroll ratio {scroll!r}")

        return ReadingPosition(
            chapter_index=max(chapter, 0),
            scroll_ratio=min(max(float(scroll), 0.0), 1.0),
        )


class ScrollSaveThrottle:
    """
    Decides whether a scroll update is worth persisting.

    A scroll-driven save happens only when the ratio moved more than
    min_delta since the last saved ratio. Chapter changes bypass this
    and call mark_saved afterwards.
    """

    def __init__(self, min_delta: float = config.SCROLL_SAVE_MIN_DELTA):
        self.min_delta = min_delta
        self._last_saved: Optional[float] = None

    @property
    def last_saved(self) -> Optional[float]:
        return self._last_saved

    def should_save(self, ratio: float) -> bool:
        if self._last_saved is None:
            return True
        return abs(ratio - self._last_saved) > self.min_delta

    def mark_saved(self, ratio: float) -> None:
        self._last_saved = ratio


class RecentBooks:
    """Most-recent-first list of books the reader opened, capped in size."""

    def __init__(self, kv: KeyValueStore, limit: int = config.RECENT_BOOKS_LIMIT):
        self._kv = kv
        self.limit = limit

    def list(self) -> List[RecentBook]:
        """Stored entries, newest first. Unreadable entries are skipped."""
        raw = self._kv.get_string(RECENT_BOOKS_KEY)
        if raw is None:
            return []

        try:
            items = json.loads(raw)
        except json.JSONDecodeError:
            log_warning("Recent books list is corrupted, resetting it")
            self._kv.remove(RECENT_BOOKS_KEY)
            return []
        if not isinstance(items, list):
            log_warning("Recent books list is not a list, resetting it")
            self._kv.remove(RECENT_BOOKS_KEY)
            return []

        books = []
        for item in items:
            try:
                books.append(RecentBook.from_dict(item))
            except (KeyError, TypeError, ValueError):
                continue
        return books

    def record(self, entry: RecentBook) -> None:
        """Put entry at the front, dropping older entries for the same book."""
        if not entry.last_read_time:
            entry.last_read_time = int(datetime.now().timestamp() * 1000)

        books = [b for b in self.list() if b.book_id != entry.book_id]
        books.insert(0, entry)
        del books[self.limit:]

        self._kv.set_string(RECENT_BOOKS_KEY, json.dumps([b.to_dict() for b in books]))
        log_info(f"Recent books: '{entry.title}' ({int(entry.progress * 100)}%)", prefix="🕘")

    def remove(self, book_id: str) -> None:
        books = [b for b in self.list() if b.book_id != book_id]
        self._kv.set_string(RECENT_BOOKS_KEY, json.dumps([b.to_dict() for b in books]))
