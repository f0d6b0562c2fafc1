"""
Folio - Enrichment Result Types
Typed payloads returned by the AI enrichment client.

The model answers in camelCase JSON; fields accept both the camelCase alias
and the Python name. Unknown keys are ignored since model output drifts.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Result(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def is_empty(self) -> bool:
        return False


class ExtractedChapter(_Result):
    title: str = Field(..., min_length=1)
    page_start: Optional[int] = Field(default=None, alias="pageStart")
    subtitle: Optional[str] = None


class ExtractedChapters(_Result):
    chapters: List[ExtractedChapter] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.chapters


class VocabularyResult(_Result):
    """Difficult word -> plain-language definition."""
    words: Dict[str, str] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.words


class BookSummary(_Result):
    summary: str = ""
    key_points: List[str] = Field(default_factory=list, alias="keyPoints")
    language: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.summary.strip()


class Theme(_Result):
    name: str
    description: Optional[str] = None


class ThemeAnalysis(_Result):
    themes: List[Theme] = Field(default_factory=list)
    concepts: List[str] = Field(default_factory=list)
    overview: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.themes and not self.concepts


class ReadingSettingsRecommendation(_Result):
    font_size: float = Field(default=16.0, alias="fontSize", gt=0)
    font_type: str = Field(default="Serif", alias="fontType")
    line_spacing: float = Field(default=1.5, alias="lineSpacing", gt=0)
    color_scheme: Optional[str] = Field(default=None, alias="colorScheme")
    explanation: Optional[str] = None


class BookmarkSuggestion(_Result):
    title: str
    reason: Optional[str] = None
    excerpt: Optional[str] = None


class BookmarkSuggestions(_Result):
    suggestions: List[BookmarkSuggestion] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.suggestions


class Translation(_Result):
    translated: str
    source_language: Optional[str] = Field(default=None, alias="sourceLanguage")
    target_language: Optional[str] = Field(default=None, alias="targetLanguage")

    def is_empty(self) -> bool:
        return not self.translated


class SpeechMarkers(_Result):
    """SSML-style markup plus optional per-sentence markers for a TTS engine."""
    ssml: str = ""
    markers: List[Dict[str, Any]] = Field(default_factory=list)
    language: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.ssml and not self.markers
