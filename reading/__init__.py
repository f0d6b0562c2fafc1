"""
Folio - Reading Session Core
Loads a book, derives its chapters, remembers where the reader stopped,
keeps bookmarks in sync and runs AI enrichment features for one book.

Architecture:
    models.py      - Book, Fragment, Bookmark, ReadingPosition, RecentBook
    errors.py      - Error taxonomy shared by every component
    loader.py      - Content Loader over a document store
    library.py     - Document store for plain-text books on disk
    chapters.py    - Chapter Mapper (fragments -> ordered chapters)
    progress.py    - Position Store, scroll throttling, recent books
    bookmarks.py   - Bookmark Manager
    results.py     - Typed enrichment results
    enrichment.py  - Enrichment Task Manager and per-feature text policy
    session.py     - Session Orchestrator observed by the presentation layer
"""
