"""
Folio - Reading Error Types

Only ContentLoadError (and the empty-content condition) reaches the
session's top-level state. Everything else is handled by the component
that raised it.
"""

from typing import Optional


class ReadingError(Exception):
    """Base class for reading-session errors."""
    pass


class ContentLoadError(ReadingError):
    """Book or fragments could not be loaded. Fatal to the session; retry via reload."""

    def __init__(self, message: str, book_id: Optional[str] = None):
        super().__init__(message)
        self.book_id = book_id


class NotFoundError(ContentLoadError):
    """The document store has no such book."""
    pass


class TransportError(ContentLoadError):
    """The document store could not be reached or returned garbage."""
    pass


class ChapterNotFound(ReadingError):
    """A navigation target did not resolve to any chapter."""

    def __init__(self, target: str):
        super().__init__(f"No chapter matches '{target}'")
        self.target = target


class PersistenceCorruption(ReadingError):
    """A stored record could not be decoded."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Corrupted record '{key}': {reason}")
        self.key = key
        self.reason = reason


class EnrichmentError(ReadingError):
    """An AI enrichment call failed or returned unusable data."""

    def __init__(self, message: str, feature: Optional[str] = None):
        super().__init__(message)
        self.feature = feature


class BookmarkSyncError(ReadingError):
    """The bookmark store rejected a read or write."""
    pass
