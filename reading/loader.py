"""
Folio - Content Loader
Fetches book metadata and the ordered fragment list from a document store.

Results are cached per book id, so loading twice returns the same snapshot
until the book is invalidated (which reload does). Failures surface as
ContentLoadError subclasses and are never retried here.
"""

from dataclasses import dataclass
from typing import Dict, List, Protocol

from core.logger import log_info, log_error
from reading.errors import ContentLoadError, TransportError
from reading.models import Book, Bookmark, Fragment


class DocumentStore(Protocol):
    """Document store client consumed by the loader and bookmark manager."""

    async def get_book(self, book_id: str) -> Book:
        ...

    async def get_fragments(self, book_id: str) -> List[Fragment]:
        ...

    async def get_bookmarks(self, book_id: str) -> List[Bookmark]:
        ...

    async def add_bookmark(self, bookmark: Bookmark) -> None:
        ...

    async def remove_bookmark(self, book_id: str, bookmark_id: str) -> None:
        ...


@dataclass(frozen=True)
class ContentSnapshot:
    """Everything the session needs to display a book."""
    book: Book
    fragments: List[Fragment]


class ContentLoader:
    """Caching front for a DocumentStore."""

    def __init__(self, store: DocumentStore):
        self._store = store
        self._books: Dict[str, Book] = {}
        self._fragments: Dict[str, List[Fragment]] = {}

    @property
    def store(self) -> DocumentStore:
        return self._store

    async def get_book(self, book_id: str) -> Book:
        """
        Fetch book metadata.

        Raises:
            NotFoundError: the store has no such book
            TransportError: any other store failure
        """
        if book_id in self._books:
            return self._books[book_id]

        try:
            book = await self._store.get_book(book_id)
        except ContentLoadError:
            raise
        except Exception as e:
            log_error(f"Failed to fetch book '{book_id}': {e}")
            raise TransportError(f"Failed to fetch book: {e}", book_id=book_id) from e

        self._books[book_id] = book
        log_info(f"Fetched book '{book.title}' ({book.language_code})", prefix="📚")
        return book

    async def get_fragments(self, book_id: str) -> List[Fragment]:
        """
        Fetch the ordered fragment list. The store's order is kept as-is.

        Raises:
            NotFoundError: the store has no such book
            TransportError: any other store failure
        """
        if book_id in self._fragments:
            return self._fragments[book_id]

        try:
            fragments = list(await self._store.get_fragments(book_id))
        except ContentLoadError:
            raise
        except Exception as e:
            log_error(f"Failed to fetch fragments for '{book_id}': {e}")
            raise TransportError(f"Failed to fetch content: {e}", book_id=book_id) from e

        self._fragments[book_id] = fragments
        log_info(f"Fetched {len(fragments)} fragments for '{book_id}'", prefix="📚")
        return fragments

    async def load(self, book_id: str) -> ContentSnapshot:
        """Fetch book and fragments together."""
        book = await self.get_book(book_id)
        fragments = await self.get_fragments(book_id)
        return ContentSnapshot(book=book, fragments=fragments)

    def invalidate(self, book_id: str) -> None:
        """Forget cached data so the next load hits the store again."""
        self._books.pop(book_id, None)
        self._fragments.pop(book_id, None)
