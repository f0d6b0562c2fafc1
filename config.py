"""
Folio - Configuration
Paths, AI client settings, enrichment limits and persistence tuning
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# =============================================================================
# PATHS
# =============================================================================
PROJECT_ROOT = Path(__file__).parent
DATA_DIR = Path(os.getenv("FOLIO_DATA_DIR", str(PROJECT_ROOT / "data")))
LOGS_DIR = PROJECT_ROOT / "logs"
STORAGE_PATH = DATA_DIR / "storage.json"  # Shared key-value blob (progress, bookmarks, recent books)
BOOKS_DIR = DATA_DIR / "books"            # Plain-text books for the local library
DIAGNOSTIC_LOG_PATH = LOGS_DIR / "diagnostic.log"

# =============================================================================
# VERSION
# =============================================================================
VERSION = "0.1.0"
PROJECT_NAME = "Folio"

# =============================================================================
# LOGGING
# =============================================================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() == "true"

# =============================================================================
# LLM CONFIGURATION
# =============================================================================
# Anthropic (Claude) powers every enrichment feature.
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")
ANTHROPIC_MAX_TOKENS = int(os.getenv("ANTHROPIC_MAX_TOKENS", "4096"))
ANTHROPIC_TIMEOUT = int(os.getenv("ANTHROPIC_TIMEOUT", "120"))

# Automatic retry for transient errors (500, 502, 503, timeouts)
API_RETRY_MAX_ATTEMPTS = 3
API_RETRY_INITIAL_DELAY = 1.0
API_RETRY_BACKOFF_MULTIPLIER = 2.0

# =============================================================================
# ENRICHMENT LIMITS
# =============================================================================
# Maximum characters of book text sent to each enrichment feature.
# Text is cut from the start of the concatenated fragments, so the same book
# always produces the same prompt.
ENRICHMENT_SUMMARY_MAX_CHARS = 5000
ENRICHMENT_THEMES_MAX_CHARS = 5000
ENRICHMENT_VOCABULARY_MAX_CHARS = 3000
ENRICHMENT_SETTINGS_MAX_CHARS = 1000      # Falls back to the book title when empty
ENRICHMENT_BOOKMARKS_MAX_CHARS = 10000
ENRICHMENT_CHAPTERS_MAX_CHARS = 20000
ENRICHMENT_TRANSLATION_MAX_CHARS = 5000
ENRICHMENT_SPEECH_MAX_CHARS = 5000

# Number of leading fragments sampled for reading-setting recommendations
ENRICHMENT_SETTINGS_SAMPLE_FRAGMENTS = 2

# =============================================================================
# READING PROGRESS
# =============================================================================
# Scroll-driven saves only happen when the ratio moved more than this much
# since the last save. Chapter changes always save.
SCROLL_SAVE_MIN_DELTA = 0.05

# Recent books list on the home screen
RECENT_BOOKS_LIMIT = 20

# =============================================================================
# BOOKMARKS
# =============================================================================
BOOKMARK_SNIPPET_LENGTH = 100
BOOKMARK_SNIPPET_ELLIPSIS = "..."

# =============================================================================
# LOCAL LIBRARY
# =============================================================================
# Plain-text books placed in BOOKS_DIR as <book_id>.txt.
LIBRARY_DEFAULT_LANGUAGE = os.getenv("LIBRARY_DEFAULT_LANGUAGE", "en")

# Chapters longer than this are split into several fragments at paragraph
# boundaries.
LIBRARY_FRAGMENT_MAX_CHARS = 8000

# Segment size when a book has no detectable chapter markers
LIBRARY_SEGMENT_MAX_CHARS = 16000
