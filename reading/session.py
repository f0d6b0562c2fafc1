"""
Folio - Reading Session
Composes loader, chapter map, position store, bookmarks and enrichment
into one observable state object for a single book.

Lifecycle:
    INITIAL -> LOADING_METADATA -> LOADING_CONTENT -> DISPLAYING_CONTENT
    Any loading state can drop to ERROR. reload() restarts the pipeline
    from LOADING_METADATA with a fresh context.

Navigation, bookmarking and enrichment are only accepted while displaying
content. Anywhere else they are logged and ignored.

Each open/reload gets its own _SessionContext. Work that finishes after
its context was replaced compares identities and throws its result away.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import config
from core.logger import log_info, log_warning, log_error, log_success
from llm.enrichment_client import EnrichmentClient
from reading.bookmarks import BookmarkManager
from reading.chapters import ChapterMap, derive_chapters
from reading.enrichment import (
    EnrichmentTaskManager,
    Feature,
    FeatureStatus,
    limit_for,
    truncate_text,
)
from reading.errors import BookmarkSyncError, ChapterNotFound, ContentLoadError, EnrichmentError
from reading.loader import ContentLoader
from reading.models import Book, Bookmark, Fragment, ReadingPosition, RecentBook
from reading.progress import PositionStore, RecentBooks, ScrollSaveThrottle, book_progress


NO_CONTENT_MESSAGE = "no content structure found"


class SessionStatus(str, Enum):
    INITIAL = "initial"
    LOADING_METADATA = "loading_metadata"
    LOADING_CONTENT = "loading_content"
    DISPLAYING_CONTENT = "displaying_content"
    ERROR = "error"


_LOADING = (SessionStatus.LOADING_METADATA, SessionStatus.LOADING_CONTENT)


@dataclass(frozen=True)
class SessionState:
    """Snapshot handed to observers. Replaced, never mutated."""
    book_id: str
    status: SessionStatus = SessionStatus.INITIAL
    error_message: Optional[str] = None
    book: Optional[Book] = None
    fragments: Tuple[Fragment, ...] = ()
    chapter_keys: Tuple[str, ...] = ()
    chapter_index: int = 0
    chapter_id: Optional[str] = None
    chapter_title: Optional[str] = None
    scroll_ratio: float = 0.0
    bookmarks: Tuple[Bookmark, ...] = ()
    feature_statuses: Dict[str, FeatureStatus] = field(default_factory=dict)
    feature_results: Dict[str, Any] = field(default_factory=dict)
    is_speaking: bool = False

    @property
    def chapter_count(self) -> int:
        return len(self.chapter_keys)

    @property
    def position(self) -> ReadingPosition:
        return ReadingPosition(self.chapter_index, self.scroll_ratio)

    def feature_status(self, name: Union[Feature, str]) -> FeatureStatus:
        key = name.value if isinstance(name, Feature) else name
        return self.feature_statuses.get(key, FeatureStatus.INITIAL)

    def feature_result(self, name: Union[Feature, str]) -> Any:
        key = name.value if isinstance(name, Feature) else name
        return self.feature_results.get(key)


class _SessionContext:
    """Per-load state. Replaced wholesale on reload."""

    def __init__(self, on_feature_change: Callable[["_SessionContext", str], None]):
        self.tasks = EnrichmentTaskManager(on_change=lambda name: on_feature_change(self, name))
        self.chapter_map = ChapterMap()
        self.throttle = ScrollSaveThrottle()


Listener = Callable[[SessionState], None]


class ReadingSession:
    """
    Reading controller for one book.

    All collaborators are passed in; the session owns no global state.
    """

    def __init__(
        self,
        book_id: str,
        loader: ContentLoader,
        position_store: PositionStore,
        bookmark_manager: BookmarkManager,
        enrichment_client: EnrichmentClient,
        recent_books: Optional[RecentBooks] = None,
    ):
        self.book_id = book_id
        self._loader = loader
        self._positions = position_store
        self._bookmarks = bookmark_manager
        self._ai = enrichment_client
        self._recent = recent_books

        self._listeners: List[Listener] = []
        self._closed = False
        self._context = _SessionContext(self._on_feature_change)
        self._state = SessionState(book_id=book_id)

    # =========================================================================
    # STATE & OBSERVERS
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def chapter_map(self) -> ChapterMap:
        return self._context.chapter_map

    @property
    def tasks(self) -> EnrichmentTaskManager:
        return self._context.tasks

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                log_error(f"Session listener failed: {e}")

    def _on_feature_change(self, context: _SessionContext, name: str) -> None:
        if context is not self._context:
            return
        self._update(
            feature_statuses=context.tasks.statuses(),
            feature_results=context.tasks.results(),
        )

    def _accepting(self, operation: str) -> bool:
        if self._closed:
            log_warning(f"Ignoring {operation}: session is closed")
            return False
        if self._state.status is not SessionStatus.DISPLAYING_CONTENT:
            log_warning(f"Ignoring {operation}: session is {self._state.status.value}")
            return False
        return True

    # =========================================================================
    # LOADING PIPELINE
    # =========================================================================

    async def open(self) -> SessionStatus:
        """Load the book and restore the saved position."""
        if self._closed or self._state.status is not SessionStatus.INITIAL:
            log_warning(f"open() ignored: session is {self._state.status.value}")
            return self._state.status
        await self._run_pipeline(self._context)
        return self._state.status

    async def reload(self) -> bool:
        """
        Start over with fresh data and a fresh context.

        Accepted from ERROR and DISPLAYING_CONTENT; rejected while loading.
        """
        status = self._state.status
        if self._closed or status in _LOADING:
            log_warning(f"reload() ignored: session is {status.value}")
            return False

        if status is SessionStatus.DISPLAYING_CONTENT:
            await self._save_position(self._state.position)

        log_info(f"Reloading '{self.book_id}'", prefix="🔄")
        self._loader.invalidate(self.book_id)
        self._bookmarks.reset()
        self._context = _SessionContext(self._on_feature_change)
        self._update(
            status=SessionStatus.INITIAL,
            error_message=None,
            book=None,
            fragments=(),
            chapter_keys=(),
            chapter_index=0,
            chapter_id=None,
            chapter_title=None,
            scroll_ratio=0.0,
            bookmarks=(),
            feature_statuses={},
            feature_results={},
            is_speaking=False,
        )
        await self._run_pipeline(self._context)
        return True

    async def _run_pipeline(self, context: _SessionContext) -> None:
        self._update(status=SessionStatus.LOADING_METADATA, error_message=None)

        try:
            book = await self._loader.get_book(self.book_id)
            stored = await self._load_position()
            if context is not self._context:
                return
            self._update(status=SessionStatus.LOADING_CONTENT, book=book)

            fragments = await self._loader.get_fragments(self.book_id)
        except ContentLoadError as e:
            if context is self._context:
                log_error(f"Could not load '{self.book_id}': {e}")
                self._update(status=SessionStatus.ERROR, error_message=str(e))
            return
        except Exception as e:
            if context is self._context:
                log_error(f"Unexpected failure loading '{self.book_id}': {e}")
                self._update(
                    status=SessionStatus.ERROR,
                    error_message=str(e) or type(e).__name__,
                )
            return

        if context is not self._context:
            return

        chapter_map = derive_chapters(fragments)
        if chapter_map.is_empty:
            log_error(f"'{self.book_id}' has {NO_CONTENT_MESSAGE}")
            self._update(status=SessionStatus.ERROR, error_message=NO_CONTENT_MESSAGE)
            return

        context.chapter_map = chapter_map
        position = (stored or ReadingPosition()).clamped(chapter_map.chapter_count)
        if stored is not None:
            context.throttle.mark_saved(position.scroll_ratio)

        self._update(
            status=SessionStatus.DISPLAYING_CONTENT,
            fragments=tuple(fragments),
            chapter_keys=tuple(chapter_map.chapter_keys),
            chapter_index=position.chapter_index,
            chapter_id=chapter_map.key_at(position.chapter_index),
            chapter_title=chapter_map.title_for(position.chapter_index),
            scroll_ratio=position.scroll_ratio,
        )
        log_success(
            f"Opened '{book.title}': {chapter_map.chapter_count} chapters, "
            f"at chapter {position.chapter_index + 1}"
        )

        try:
            bookmarks = await self._bookmarks.list(self.book_id)
        except BookmarkSyncError as e:
            log_warning(str(e))
        else:
            if context is self._context:
                self._update(bookmarks=tuple(bookmarks))

        if context is self._context:
            self._record_recent()

    # =========================================================================
    # POSITION
    # =========================================================================

    async def _load_position(self) -> Optional[ReadingPosition]:
        """Stored position, or None when there is none or the store failed."""
        try:
            return await self._positions.load(self.book_id)
        except OSError as e:
            log_warning(f"Could not read saved position, starting from the beginning: {e}")
            return None

    async def _save_position(self, position: ReadingPosition) -> None:
        book = self._state.book
        try:
            await self._positions.save(
                self.book_id,
                position,
                book_title=book.title if book else None,
                total_chapters=self._state.chapter_count,
            )
        except OSError as e:
            log_error(f"Failed to save reading position: {e}")
            return
        self._context.throttle.mark_saved(position.scroll_ratio)

    def _record_recent(self) -> None:
        if self._recent is None or self._state.book is None:
            return
        book = self._state.book
        try:
            self._recent.record(RecentBook(
                book_id=book.book_id,
                title=book.title,
                author=book.author,
                cover_url=book.cover_url,
                progress=book_progress(self._state.position, self._state.chapter_count),
                current_chapter=self._state.chapter_index,
                total_chapters=self._state.chapter_count,
            ))
        except OSError as e:
            log_error(f"Failed to update recent books: {e}")

    async def go_to_chapter(self, target: Union[int, str]) -> bool:
        """
        Move to a chapter by 0-based index, chapter key, fragment id or numeral.

        Returns:
            True if the current chapter changed. Re-selecting the current
            chapter and unresolvable targets return False and save nothing.
        """
        if not self._accepting("go_to_chapter"):
            return False

        chapter_map = self._context.chapter_map
        if isinstance(target, int) and not isinstance(target, bool):
            if not 0 <= target < chapter_map.chapter_count:
                log_warning(f"Chapter index {target} out of range (0-{chapter_map.chapter_count - 1})")
                return False
            index = target
        else:
            try:
                index = chapter_map.resolve_index(target)
            except ChapterNotFound as e:
                log_warning(str(e))
                return False

        if index == self._state.chapter_index:
            return False

        position = ReadingPosition(chapter_index=index, scroll_ratio=0.0)
        self._update(
            chapter_index=index,
            chapter_id=chapter_map.key_at(index),
            chapter_title=chapter_map.title_for(index),
            scroll_ratio=0.0,
        )
        await self._save_position(position)
        return True

    async def next_chapter(self) -> bool:
        if not self._accepting("next_chapter"):
            return False
        if self._state.chapter_index + 1 >= self._state.chapter_count:
            return False
        return await self.go_to_chapter(self._state.chapter_index + 1)

    async def previous_chapter(self) -> bool:
        if not self._accepting("previous_chapter"):
            return False
        if self._state.chapter_index <= 0:
            return False
        return await self.go_to_chapter(self._state.chapter_index - 1)

    async def go_to_fragment(self, fragment_id: str) -> bool:
        """Move to the chapter containing fragment_id."""
        if not self._accepting("go_to_fragment"):
            return False
        index = self._context.chapter_map.fragment_to_index.get(fragment_id)
        if index is None:
            log_warning(f"No fragment '{fragment_id}' in this book")
            return False
        return await self.go_to_chapter(index)

    async def update_scroll(self, ratio: float) -> bool:
        """
        Record the scroll ratio inside the current chapter.

        Returns:
            True if the new position was persisted
        """
        if not self._accepting("update_scroll"):
            return False

        ratio = min(max(float(ratio), 0.0), 1.0)
        self._update(scroll_ratio=ratio)

        if not self._context.throttle.should_save(ratio):
            return False
        await self._save_position(self._state.position)
        return True

    # =========================================================================
    # BOOKMARKS
    # =========================================================================

    async def toggle_bookmark(self, fragment_id: str) -> Optional[bool]:
        """
        Add or remove the bookmark on a fragment.

        Returns:
            True if added, False if removed, None if nothing happened
        """
        if not self._accepting("toggle_bookmark"):
            return None

        context = self._context
        chapter_map = context.chapter_map
        fragment = chapter_map.find_fragment(fragment_id)
        if fragment is None:
            log_warning(f"Cannot bookmark unknown fragment '{fragment_id}'")
            return None

        index = chapter_map.fragment_to_index[fragment_id]
        try:
            added = await self._bookmarks.toggle(
                self.book_id,
                fragment,
                chapter_id=chapter_map.key_at(index),
                chapter_title=chapter_map.title_for(index),
            )
        except BookmarkSyncError as e:
            log_warning(str(e))
            return None

        if context is not self._context:
            return None
        self._update(bookmarks=tuple(self._bookmarks.bookmarks))
        return added

    async def refresh_bookmarks(self) -> bool:
        if not self._accepting("refresh_bookmarks"):
            return False
        context = self._context
        try:
            bookmarks = await self._bookmarks.refresh(self.book_id)
        except BookmarkSyncError as e:
            log_warning(str(e))
            return False
        if context is not self._context:
            return False
        self._update(bookmarks=tuple(bookmarks))
        return True

    def is_bookmarked(self, fragment_id: str) -> bool:
        return self._bookmarks.is_bookmarked(fragment_id)

    # =========================================================================
    # ENRICHMENT
    # =========================================================================

    async def _enrich(
        self,
        feature: Feature,
        operation: Callable[[], Awaitable[Any]],
        force: bool = False,
    ) -> Any:
        if not self._accepting(feature.value):
            return None

        context = self._context
        result = await context.tasks.run(feature, operation, force=force)
        if context is not self._context:
            log_warning(f"Dropping late '{feature.value}' result from a previous load")
            return None
        return result

    def _text_for(self, feature: Feature) -> str:
        return truncate_text(self._context.chapter_map.full_text(), limit_for(feature))

    def _language(self) -> str:
        book = self._state.book
        return book.language_code if book else "en"

    def _title(self) -> str:
        book = self._state.book
        return book.title if book else self.book_id

    async def extract_chapters(self, force: bool = False):
        """AI chapter list for books whose structure is poor. force re-extracts."""
        text = self._text_for(Feature.EXTRACT_CHAPTERS)
        title = self._title()

        async def operation():
            if not text.strip():
                raise EnrichmentError("No text to extract chapters from", Feature.EXTRACT_CHAPTERS.value)
            return await self._ai.extract_chapters(text, title)

        return await self._enrich(Feature.EXTRACT_CHAPTERS, operation, force=force)

    async def analyze_vocabulary(self, text: Optional[str] = None, force: bool = False):
        """Explain difficult words in `text`, or in the current chapter."""
        if text is None and self._state.status is SessionStatus.DISPLAYING_CONTENT:
            source = self._context.chapter_map.text_for(self._state.chapter_index)
        else:
            source = text or ""
        sample = truncate_text(source, limit_for(Feature.VOCABULARY))
        language = self._language()

        async def operation():
            if not sample.strip():
                raise EnrichmentError("No text for vocabulary analysis", Feature.VOCABULARY.value)
            return await self._ai.explain_vocabulary(sample, language)

        return await self._enrich(Feature.VOCABULARY, operation, force=force or text is not None)

    async def summarize(self, language: Optional[str] = None, force: bool = False):
        text = self._text_for(Feature.SUMMARY)
        title = self._title()
        if not text.strip():
            log_warning(f"No text to summarize, using the title '{title}'")
            text = title
        target = language or self._language()

        async def operation():
            return await self._ai.summarize(text, title, target)

        return await self._enrich(Feature.SUMMARY, operation, force=force or language is not None)

    async def analyze_themes(self, force: bool = False):
        text = self._text_for(Feature.THEMES)

        async def operation():
            if not text.strip():
                raise EnrichmentError("No text for theme analysis", Feature.THEMES.value)
            return await self._ai.analyze_themes(text)

        return await self._enrich(Feature.THEMES, operation, force=force)

    async def recommend_settings(self, force: bool = False):
        sample = ""
        if self._state.status is SessionStatus.DISPLAYING_CONTENT:
            fragments = self._state.fragments[:config.ENRICHMENT_SETTINGS_SAMPLE_FRAGMENTS]
            sample = "\n\n".join(f.text for f in fragments)
        sample = truncate_text(sample, limit_for(Feature.SETTINGS))
        if not sample.strip():
            sample = self._title()
        language = self._language()

        async def operation():
            return await self._ai.recommend_settings(sample, language)

        return await self._enrich(Feature.SETTINGS, operation, force=force)

    async def suggest_bookmarks(self, force: bool = False):
        text = self._text_for(Feature.BOOKMARKS)

        async def operation():
            if not text.strip():
                raise EnrichmentError("No text for bookmark suggestions", Feature.BOOKMARKS.value)
            return await self._ai.suggest_bookmarks(text)

        return await self._enrich(Feature.BOOKMARKS, operation, force=force)

    async def translate(self, text: str, target_language: str):
        """Translate a selection. Always recomputed since the input varies."""
        sample = truncate_text(text or "", limit_for(Feature.TRANSLATION))

        async def operation():
            if not sample.strip():
                raise EnrichmentError("Nothing to translate", Feature.TRANSLATION.value)
            return await self._ai.translate(sample, target_language)

        return await self._enrich(Feature.TRANSLATION, operation, force=True)

    async def generate_speech_markers(self, text: str):
        """Speech markup for a TTS engine. Marks the session as speaking on success."""
        sample = truncate_text(text or "", limit_for(Feature.SPEECH))
        language = self._language()

        async def operation():
            if not sample.strip():
                raise EnrichmentError("Nothing to speak", Feature.SPEECH.value)
            return await self._ai.speech_markers(sample, language)

        result = await self._enrich(Feature.SPEECH, operation, force=True)
        if result is not None:
            self._update(is_speaking=True)
        return result

    def stop_speaking(self) -> None:
        if self._state.is_speaking:
            self._update(is_speaking=False)

    def clear_feature(self, name: Union[Feature, str]) -> bool:
        """Reset a feature to initial. Loading features are left alone."""
        return self._context.tasks.clear(name)

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    async def close(self) -> None:
        """Persist the final position and detach all listeners."""
        if self._closed:
            return
        if self._state.status is SessionStatus.DISPLAYING_CONTENT:
            await self._save_position(self._state.position)
            self._record_recent()
        self._closed = True
        self._listeners.clear()
        log_info(f"Closed reading session for '{self.book_id}'", prefix="📕")
