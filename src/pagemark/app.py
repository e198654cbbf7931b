"""Pagemark - personal e-book reader core."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from pagemark.config import AppConfig, load_config
from pagemark.library.database import Database
from pagemark.library.importer import ImportFailed, Importer
from pagemark.library.models import Book
from pagemark.library.repository import Library
from pagemark.library.storage import BookStorage
from pagemark.parsers.base import ParseError
from pagemark.reading.progress import ProgressTracker
from pagemark.reading.session import ReaderSession
from pagemark.reading.stats import format_file_size, format_minutes, reading_stats

log = logging.getLogger(__name__)


class PagemarkApp:
    """Wires config, storage and the library for one process lifetime."""

    def __init__(self, config: AppConfig | None = None) -> None:
        self.config = config or load_config()
        self.db = Database(self.config.db_path)
        self.library = Library(BookStorage(self.db))
        self.importer = Importer(
            self.library,
            text_encodings=self.config.text_encodings,
            replacement_threshold=self.config.replacement_threshold,
        )
        self.tracker = ProgressTracker(self.library)

    async def import_files(self, paths: list[str]) -> int:
        await self.library.load()
        failures = 0
        for raw in paths:
            path = Path(raw).expanduser().resolve()
            if not path.exists():
                print(f"{raw}: file not found", file=sys.stderr)
                failures += 1
                continue
            try:
                book = await self.importer.import_file(path)
            except (ValueError, ParseError, ImportFailed, OSError) as e:
                log.warning("Import of %s failed: %s", path, e)
                print(f"{raw}: {e}", file=sys.stderr)
                failures += 1
                continue
            print(
                f"{book.title} [{book.format}, {format_file_size(book.file_size)}]"
                f" {book.total_blocks} blocks, {book.total_chapters} chapters"
            )
        return failures

    async def show_library(self) -> None:
        books = await self.library.load()
        if not books:
            print("Library is empty. Import a book with: pagemark FILE")
            return
        for book in books:
            print(_describe(book))

        stats = reading_stats(books)
        print()
        print(
            f"{stats.total_books} started, "
            f"{format_minutes(stats.total_reading_time)} read, "
            f"average progress {stats.average_progress:.2f}%"
        )

    async def open_session(self, book_id: str, **kwargs) -> Optional[ReaderSession]:
        """Build a reader session for a stored book using the configured timings.

        Returns None when the book or its content is not in storage.
        """
        if book_id not in self.library:
            await self.library.load()
        if book_id not in self.library:
            log.warning("Cannot open unknown book %s", book_id)
            return None
        content = await self.library.get_content(book_id)
        if content is None:
            log.warning("No content stored for book %s", book_id)
            return None
        return ReaderSession(
            self.tracker,
            book_id,
            content,
            debounce_seconds=self.config.progress_debounce_seconds,
            throttle_seconds=self.config.chapter_throttle_seconds,
            **kwargs,
        )

    def close(self) -> None:
        self.db.close()


def _describe(book: Book) -> str:
    progress = book.reading_progress
    if progress is None:
        status = "unread"
    else:
        status = f"{progress.progress:.2f}%, {format_minutes(progress.reading_time)}"
        if progress.current_chapter:
            status += f", at {progress.current_chapter}"
    return f"{book.id}  {book.title} - {book.author} ({status})"


def _setup_logging(config: AppConfig) -> None:
    handler = logging.FileHandler(config.log_path, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root = logging.getLogger("pagemark")
    root.setLevel(getattr(logging, config.log_level, logging.DEBUG))
    root.addHandler(handler)


async def _run(app: PagemarkApp, files: list[str]) -> int:
    try:
        if files:
            return 1 if await app.import_files(files) else 0
        await app.show_library()
        return 0
    finally:
        app.close()


def main() -> None:
    config = load_config()
    _setup_logging(config)

    app = PagemarkApp(config=config)
    sys.exit(asyncio.run(_run(app, sys.argv[1:])))


if __name__ == "__main__":
    main()
