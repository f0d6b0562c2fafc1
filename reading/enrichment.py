"""
Folio - Enrichment Task Manager
Runs named async enrichment operations with a per-feature status.

Each feature moves initial -> loading -> ready | error. A run requested
while the same feature is loading is dropped without calling the operation.
The loading check and the switch to loading happen before the first await,
so two runs started back to back on the event loop cannot both get through.
A cancelled run ends in error, so the feature can be retried or cleared.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import config
from core.logger import log_info, log_warning

T = TypeVar('T')


class FeatureStatus(str, Enum):
    INITIAL = "initial"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class Feature(str, Enum):
    """Enrichment feature slots."""
    EXTRACT_CHAPTERS = "extract_chapters"
    VOCABULARY = "vocabulary"
    SUMMARY = "summary"
    THEMES = "themes"
    SETTINGS = "settings"
    BOOKMARKS = "bookmarks"
    TRANSLATION = "translation"
    SPEECH = "speech"


# Input ceilings per feature, in characters
TEXT_LIMITS: Dict[Feature, int] = {
    Feature.SUMMARY: config.ENRICHMENT_SUMMARY_MAX_CHARS,
    Feature.THEMES: config.ENRICHMENT_THEMES_MAX_CHARS,
    Feature.VOCABULARY: config.ENRICHMENT_VOCABULARY_MAX_CHARS,
    Feature.SETTINGS: config.ENRICHMENT_SETTINGS_MAX_CHARS,
    Feature.BOOKMARKS: config.ENRICHMENT_BOOKMARKS_MAX_CHARS,
    Feature.EXTRACT_CHAPTERS: config.ENRICHMENT_CHAPTERS_MAX_CHARS,
    Feature.TRANSLATION: config.ENRICHMENT_TRANSLATION_MAX_CHARS,
    Feature.SPEECH: config.ENRICHMENT_SPEECH_MAX_CHARS,
}


def truncate_text(text: str, limit: int) -> str:
    """First `limit` characters of text."""
    if limit <= 0:
        return ""
    return text[:limit]


def limit_for(feature: Feature) -> int:
    return TEXT_LIMITS[feature]


def _is_empty_result(result: Any) -> bool:
    if result is None:
        return True
    is_empty = getattr(result, "is_empty", None)
    if callable(is_empty):
        return is_empty()
    try:
        return len(result) == 0
    except TypeError:
        return False


def _feature_name(name: Any) -> str:
    return name.value if isinstance(name, Enum) else str(name)


class EnrichmentTaskManager:
    """
    Status, result and error slots per feature name.

    on_change, if given, is called with the feature name after every
    status transition.
    """

    def __init__(self, on_change: Optional[Callable[[str], None]] = None):
        self._on_change = on_change
        self._statuses: Dict[str, FeatureStatus] = {}
        self._results: Dict[str, Any] = {}
        self._errors: Dict[str, str] = {}

    async def run(
        self,
        name: Any,
        operation: Callable[[], Awaitable[T]],
        force: bool = False,
    ) -> Optional[T]:
        """
        Run operation for feature `name` unless it is already loading.

        A feature already ready with a non-empty result returns the cached
        result without calling operation, unless force is set.

        Returns:
            The result, or None when the run was rejected or failed
        """
        key = _feature_name(name)
        status = self.status(key)

        if status is FeatureStatus.LOADING:
            log_info(f"'{key}' is already running, ignoring request", prefix="⏳")
            return None

        if (
            status is FeatureStatus.READY
            and not force
            and not _is_empty_result(self._results.get(key))
        ):
            log_info(f"'{key}' already available, reusing result", prefix="♻️")
            return self._results[key]

        self._statuses[key] = FeatureStatus.LOADING
        self._errors.pop(key, None)
        self._notify(key)

        try:
            result = await operation()
        except asyncio.CancelledError:
            self._statuses[key] = FeatureStatus.ERROR
            self._errors[key] = "cancelled"
            log_warning(f"Enrichment '{key}' was cancelled")
            self._notify(key)
            raise
        except Exception as e:
            self._statuses[key] = FeatureStatus.ERROR
            self._errors[key] = str(e) or type(e).__name__
            log_warning(f"Enrichment '{key}' failed: {e}")
            self._notify(key)
            return None

        self._results[key] = result
        self._statuses[key] = FeatureStatus.READY
        log_info(f"Enrichment '{key}' ready", prefix="✨")
        self._notify(key)
        return result

    def status(self, name: Any) -> FeatureStatus:
        return self._statuses.get(_feature_name(name), FeatureStatus.INITIAL)

    def result(self, name: Any) -> Any:
        return self._results.get(_feature_name(name))

    def error(self, name: Any) -> Optional[str]:
        return self._errors.get(_feature_name(name))

    def statuses(self) -> Dict[str, FeatureStatus]:
        return dict(self._statuses)

    def results(self) -> Dict[str, Any]:
        return dict(self._results)

    def is_loading(self, name: Any) -> bool:
        return self.status(name) is FeatureStatus.LOADING

    @property
    def any_loading(self) -> bool:
        return any(s is FeatureStatus.LOADING for s in self._statuses.values())

    def clear(self, name: Any) -> bool:
        """
        Reset a feature back to initial and drop its result.

        A loading feature is left alone; returns False in that case.
        """
        key = _feature_name(name)
        if self.status(key) is FeatureStatus.LOADING:
            return False
        self._statuses.pop(key, None)
        self._results.pop(key, None)
        self._errors.pop(key, None)
        self._notify(key)
        return True

    def _notify(self, key: str) -> None:
        if self._on_change is not None:
            self._on_change(key)
