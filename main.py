#!/usr/bin/env python3
"""
Folio - Main Entry Point
Opens a book from the local library in a reading session (dev harness)

Usage:
    python main.py --list                  # List books in the library
    python main.py my_book                 # Open, show chapters and saved position
    python main.py my_book --go 3          # Navigate (key, fragment id or numeral)
    python main.py my_book --scroll 0.4    # Record a scroll position
    python main.py my_book --bookmark my_book-2
    python main.py my_book --summarize     # Needs ANTHROPIC_API_KEY
"""

import argparse
import asyncio
import sys
from pathlib import Path

from rich.table import Table

import config
from core.kv_store import JsonFileStore
from core.logger import (
    console,
    setup_logging,
    log_header,
    log_section,
    log_subsection,
    log_success,
    log_warning,
    log_error,
)
from llm.anthropic_client import create_anthropic_client
from llm.enrichment_client import AnthropicEnrichmentClient
from reading.bookmarks import BookmarkManager
from reading.library import LocalLibraryStore
from reading.loader import ContentLoader
from reading.progress import PositionStore, RecentBooks
from reading.session import ReadingSession, SessionStatus


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Folio reading session harness")
    parser.add_argument("book_id", nargs="?", help="Book id (file stem under the books directory)")
    parser.add_argument("--books-dir", type=Path, default=config.BOOKS_DIR)
    parser.add_argument("--storage", type=Path, default=config.STORAGE_PATH)
    parser.add_argument("--list", action="store_true", help="List books and recent reads")
    parser.add_argument("--go", metavar="TARGET", help="Go to a chapter")
    parser.add_argument("--scroll", type=float, metavar="RATIO", help="Scroll ratio in the current chapter")
    parser.add_argument("--bookmark", metavar="FRAGMENT_ID", help="Toggle a bookmark")
    parser.add_argument("--summarize", action="store_true", help="Generate an AI summary")
    return parser.parse_args(argv)


def print_library(library: LocalLibraryStore, recent: RecentBooks) -> None:
    log_section("Library", "📚")
    books = library.list_books()
    if not books:
        log_subsection(f"No books in {library.books_dir}")
    for book_id in books:
        log_subsection(book_id)

    log_section("Recently Read", "🕘")
    for entry in recent.list():
        log_subsection(f"{entry.title} - {int(entry.progress * 100)}%")


def print_session(session: ReadingSession) -> None:
    state = session.state
    chapter_map = session.chapter_map

    table = Table(title=state.book.title if state.book else session.book_id)
    table.add_column("#", justify="right")
    table.add_column("Key")
    table.add_column("Title")
    table.add_column("Fragments", justify="right")
    for index, key in enumerate(state.chapter_keys):
        marker = "▶" if index == state.chapter_index else ""
        table.add_row(
            f"{marker}{index + 1}",
            key,
            chapter_map.title_for(index),
            str(len(chapter_map.fragments_for(index))),
        )
    console.print(table)

    log_section("Position", "📍")
    log_subsection(f"Chapter {state.chapter_index + 1}/{state.chapter_count} ({state.chapter_title})")
    log_subsection(f"Scroll: {state.scroll_ratio:.0%}")

    if state.bookmarks:
        log_section("Bookmarks", "🔖")
        for bookmark in state.bookmarks:
            log_subsection(f"{bookmark.display_name} [{bookmark.heading_id}]")


async def run(args: argparse.Namespace) -> int:
    kv = JsonFileStore(args.storage)
    library = LocalLibraryStore(args.books_dir, kv)
    recent = RecentBooks(kv)

    if args.list or not args.book_id:
        print_library(library, recent)
        return 0

    session = ReadingSession(
        book_id=args.book_id,
        loader=ContentLoader(library),
        position_store=PositionStore(kv),
        bookmark_manager=BookmarkManager(library),
        enrichment_client=AnthropicEnrichmentClient(create_anthropic_client()),
        recent_books=recent,
    )

    status = await session.open()
    if status is not SessionStatus.DISPLAYING_CONTENT:
        log_error(f"Could not open '{args.book_id}': {session.state.error_message}")
        return 1

    try:
        if args.go is not None:
            target = args.go
            if not await session.go_to_chapter(target):
                log_warning(f"Stayed on chapter {session.state.chapter_index + 1}")
        if args.scroll is not None:
            await session.update_scroll(args.scroll)
        if args.bookmark:
            added = await session.toggle_bookmark(args.bookmark)
            if added is not None:
                log_success("Bookmark added" if added else "Bookmark removed")
        if args.summarize:
            if not config.ANTHROPIC_API_KEY:
                log_warning("ANTHROPIC_API_KEY is not set, skipping summary")
            else:
                summary = await session.summarize()
                if summary is not None:
                    log_section("Summary", "📝")
                    console.print(summary.summary)
                else:
                    log_error(f"Summary failed: {session.tasks.error('summary')}")

        print_session(session)
    finally:
        await session.close()

    return 0


def main(argv=None) -> int:
    args = parse_args(argv)

    config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    setup_logging(
        log_file_path=config.DIAGNOSTIC_LOG_PATH,
        level=config.LOG_LEVEL,
        log_to_file=config.LOG_TO_FILE,
    )
    log_header(f"{config.PROJECT_NAME} v{config.VERSION}")

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        log_warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
