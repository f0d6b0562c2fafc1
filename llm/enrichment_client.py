"""
Folio - AI Enrichment Client
Prompts and response parsing for the reading-enrichment features.

Every feature asks Claude for a single JSON object, pulls it out of the
reply and validates it against the matching result model. Anything that
goes wrong (API failure, no JSON, schema mismatch) raises EnrichmentError.
Input text arrives already truncated by the caller.
"""

import json
import re
from typing import Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

from core.logger import log_info, log_error
from llm.anthropic_client import AnthropicClient
from reading.errors import EnrichmentError
from reading.results import (
    BookmarkSuggestions,
    BookSummary,
    ExtractedChapters,
    ReadingSettingsRecommendation,
    SpeechMarkers,
    ThemeAnalysis,
    Translation,
    VocabularyResult,
)

R = TypeVar('R', bound=BaseModel)


# =============================================================================
# ENRICHMENT PROMPTS
# =============================================================================

SYSTEM_PROMPT = (
    "You are a careful reading assistant. You answer with one JSON object "
    "and nothing else."
)

CHAPTER_EXTRACTION_PROMPT = """<task>
Identify the chapters of the book below from its text.

<book_context>
Book: {book_title}
</book_context>

<book_text>
{text}
</book_text>

<output_format>
{{"chapters": [{{"title": "...", "pageStart": 1, "subtitle": "..."}}]}}
pageStart is the 1-based position of the chapter in reading order.
subtitle may be null.
</output_format>
</task>"""

VOCABULARY_PROMPT = """<task>
Find the words and phrases in this passage that a general reader may not know
and explain each in one plain sentence. Explanations are in {language}.

<passage>
{text}
</passage>

<output_format>
{{"words": {{"word": "definition"}}}}
</output_format>
</task>"""

SUMMARY_PROMPT = """<task>
Summarize the book below for someone deciding whether to read it.
Write the summary in {language}.

<book_context>
Book: {book_title}
</book_context>

<book_text>
{text}
</book_text>

<output_format>
{{"summary": "...", "keyPoints": ["..."], "language": "{language}"}}
</output_format>
</task>"""

THEMES_PROMPT = """<task>
Identify the main themes and key concepts in this text.

<book_text>
{text}
</book_text>

<output_format>
{{"themes": [{{"name": "...", "description": "..."}}], "concepts": ["..."], "overview": "..."}}
</output_format>
</task>"""

SETTINGS_PROMPT = """<task>
Recommend comfortable reading settings for the text sample below, considering
its script, density and language ({language}).

<sample>
{text}
</sample>

<output_format>
{{"fontSize": 16.0, "fontType": "Serif", "lineSpacing": 1.5, "colorScheme": "light", "explanation": "..."}}
</output_format>
</task>"""

BOOKMARK_SUGGESTION_PROMPT = """<task>
Suggest passages in this text that a reader would want to bookmark: key
arguments, turning points, memorable lines.

<book_text>
{text}
</book_text>

<output_format>
{{"suggestions": [{{"title": "...", "reason": "...", "excerpt": "..."}}]}}
</output_format>
</task>"""

TRANSLATION_PROMPT = """<task>
Translate the text below into {target_language}. Keep the meaning and tone.

<text>
{text}
</text>

<output_format>
{{"translated": "...", "sourceLanguage": "...", "targetLanguage": "{target_language}"}}
</output_format>
</task>"""

SPEECH_PROMPT = """<task>
Prepare this text for a text-to-speech engine. Mark pauses and emphasis with
SSML and list the sentences with a suggested pause after each.
The text is in {language}.

<text>
{text}
</text>

<output_format>
{{"ssml": "<speak>...</speak>", "markers": [{{"text": "...", "pauseMs": 300}}], "language": "{language}"}}
</output_format>
</task>"""


def extract_json_from_text(text: str) -> Optional[str]:
    """
    Extract a JSON object from a model reply.

    Looks for a ```json block first, then the outermost { ... }.
    """
    code_block_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if code_block_match:
        return code_block_match.group(1)

    json_match = re.search(r"\{.*\}", text, re.DOTALL)
    if json_match:
        potential_json = json_match.group(0)
        try:
            json.loads(potential_json)
            return potential_json
        except json.JSONDecodeError:
            pass

    return None


def parse_result(text: str, model: Type[R], feature: str) -> R:
    """
    Validate a model reply against a result type.

    Raises:
        EnrichmentError: no JSON object in the reply, or it does not fit the model
    """
    raw = extract_json_from_text(text)
    if raw is None:
        raise EnrichmentError("No JSON object in model response", feature=feature)
    try:
        return model.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise EnrichmentError(f"Malformed {feature} response: {e}", feature=feature) from e


class EnrichmentClient(Protocol):
    """One async method per enrichment feature."""

    async def extract_chapters(self, text: str, book_title: str) -> ExtractedChapters:
        ...

    async def explain_vocabulary(self, text: str, language: str) -> VocabularyResult:
        ...

    async def summarize(self, text: str, book_title: str, language: str) -> BookSummary:
        ...

    async def analyze_themes(self, text: str) -> ThemeAnalysis:
        ...

    async def recommend_settings(self, sample: str, language: str) -> ReadingSettingsRecommendation:
        ...

    async def suggest_bookmarks(self, text: str) -> BookmarkSuggestions:
        ...

    async def translate(self, text: str, target_language: str) -> Translation:
        ...

    async def speech_markers(self, text: str, language: str) -> SpeechMarkers:
        ...


class AnthropicEnrichmentClient:
    """EnrichmentClient backed by Claude."""

    def __init__(self, client: AnthropicClient, max_tokens: Optional[int] = None):
        self._client = client
        self.max_tokens = max_tokens

    async def _ask(self, feature: str, prompt: str, model: Type[R], temperature: float = 0.3) -> R:
        response = await self._client.generate(
            prompt=prompt,
            system_prompt=SYSTEM_PROMPT,
            max_tokens=self.max_tokens,
            temperature=temperature,
        )
        if not response.success:
            log_error(f"Enrichment '{feature}' call failed ({response.error_type}): {response.error}")
            raise EnrichmentError(f"LLM call failed: {response.error}", feature=feature)

        result = parse_result(response.text, model, feature)
        log_info(f"Parsed {feature} response ({response.output_tokens} tokens)", prefix="✨")
        return result

    async def extract_chapters(self, text: str, book_title: str) -> ExtractedChapters:
        prompt = CHAPTER_EXTRACTION_PROMPT.format(book_title=book_title, text=text)
        return await self._ask("extract_chapters", prompt, ExtractedChapters, temperature=0)

    async def explain_vocabulary(self, text: str, language: str) -> VocabularyResult:
        prompt = VOCABULARY_PROMPT.format(language=language, text=text)
        return await self._ask("vocabulary", prompt, VocabularyResult)

    async def summarize(self, text: str, book_title: str, language: str) -> BookSummary:
        prompt = SUMMARY_PROMPT.format(book_title=book_title, language=language, text=text)
        return await self._ask("summary", prompt, BookSummary)

    async def analyze_themes(self, text: str) -> ThemeAnalysis:
        return await self._ask("themes", THEMES_PROMPT.format(text=text), ThemeAnalysis)

    async def recommend_settings(self, sample: str, language: str) -> ReadingSettingsRecommendation:
        prompt = SETTINGS_PROMPT.format(language=language, text=sample)
        return await self._ask("settings", prompt, ReadingSettingsRecommendation)

    async def suggest_bookmarks(self, text: str) -> BookmarkSuggestions:
        prompt = BOOKMARK_SUGGESTION_PROMPT.format(text=text)
        return await self._ask("bookmarks", prompt, BookmarkSuggestions)

    async def translate(self, text: str, target_language: str) -> Translation:
        prompt = TRANSLATION_PROMPT.format(target_language=target_language, text=text)
        return await self._ask("translation", prompt, Translation, temperature=0)

    async def speech_markers(self, text: str, language: str) -> SpeechMarkers:
        prompt = SPEECH_PROMPT.format(language=language, text=text)
        return await self._ask("speech", prompt, SpeechMarkers, temperature=0)
