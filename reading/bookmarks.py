"""
Folio - Bookmark Manager
Toggle-style bookmarks keyed by fragment id, reconciled against the store.

The cached list is only ever replaced by a fresh read from the store, never
edited in place, so a failed write cannot make the visible set drift from
the store of record.
"""

from datetime import datetime
from typing import Dict, List, Optional

import config
from core.logger import log_info, log_warning
from reading.errors import BookmarkSyncError
from reading.loader import DocumentStore
from reading.models import Bookmark, Fragment


def make_snippet(
    fragment: Fragment,
    length: int = config.BOOKMARK_SNIPPET_LENGTH,
    ellipsis: str = config.BOOKMARK_SNIPPET_ELLIPSIS,
) -> Optional[str]:
    """First `length` characters of the fragment's first paragraph."""
    paragraph = fragment.first_paragraph
    if not paragraph:
        return None
    if len(paragraph) <= length:
        return paragraph
    return paragraph[:length] + ellipsis


def _unique_by_heading(bookmarks: List[Bookmark]) -> List[Bookmark]:
    seen: Dict[str, Bookmark] = {}
    for bookmark in bookmarks:
        seen.setdefault(bookmark.heading_id, bookmark)
    return list(seen.values())


class BookmarkManager:
    """Per-book bookmark cache in front of a DocumentStore."""

    def __init__(self, store: DocumentStore):
        self._store = store
        self._book_id: Optional[str] = None
        self._bookmarks: List[Bookmark] = []
        self._loaded = False

    @property
    def bookmarks(self) -> List[Bookmark]:
        return list(self._bookmarks)

    async def list(self, book_id: str) -> List[Bookmark]:
        """Bookmarks for book_id, fetched on first use and cached afterwards."""
        if self._loaded and self._book_id == book_id:
            return self.bookmarks
        return await self.refresh(book_id)

    async def refresh(self, book_id: str) -> List[Bookmark]:
        """
        Re-read the bookmark list from the store.

        Raises:
            BookmarkSyncError: the store read failed (cache left as it was)
        """
        try:
            fetched = await self._store.get_bookmarks(book_id)
        except Exception as e:
            raise BookmarkSyncError(f"Failed to fetch bookmarks for '{book_id}': {e}") from e

        self._book_id = book_id
        self._bookmarks = _unique_by_heading(list(fetched))
        self._loaded = True
        return self.bookmarks

    def find(self, fragment_id: str) -> Optional[Bookmark]:
        for bookmark in self._bookmarks:
            if bookmark.heading_id == fragment_id:
                return bookmark
        return None

    def is_bookmarked(self, fragment_id: str) -> bool:
        return self.find(fragment_id) is not None

    async def toggle(
        self,
        book_id: str,
        fragment: Fragment,
        chapter_id: str,
        chapter_title: str,
    ) -> bool:
        """
        Remove the fragment's bookmark if it has one, otherwise add one.

        Returns:
            True if a bookmark was added, False if one was removed

        Raises:
            BookmarkSyncError: the store rejected the write or the re-read
        """
        if not self._loaded or self._book_id != book_id:
            await self.refresh(book_id)

        existing = self.find(fragment.fragment_id)
        try:
            if existing is not None:
                await self._store.remove_bookmark(book_id, existing.bookmark_id)
            else:
                bookmark = Bookmark(
                    bookmark_id=fragment.fragment_id,
                    book_id=book_id,
                    chapter_id=chapter_id,
                    chapter_title=chapter_title,
                    heading_id=fragment.fragment_id,
                    heading_title=fragment.title,
                    created_at=datetime.now(),
                    text_snippet=make_snippet(fragment),
                )
                await self._store.add_bookmark(bookmark)
        except Exception as e:
            action = "remove" if existing is not None else "add"
            log_warning(f"Bookmark {action} failed for '{fragment.fragment_id}': {e}")
            raise BookmarkSyncError(f"Failed to {action} bookmark: {e}") from e

        await self.refresh(book_id)

        added = existing is None
        verb = "Added" if added else "Removed"
        log_info(f"{verb} bookmark on '{fragment.title or fragment.fragment_id}'", prefix="🔖")
        return added

    def reset(self) -> None:
        """Forget the cached list."""
        self._book_id = None
        self._bookmarks = []
        self._loaded = False
