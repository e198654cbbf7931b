"""Import pipeline: file bytes -> parsed content -> persisted records."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from pathlib import Path
from typing import Iterable, Optional

from pagemark.parsers.base import BaseParser, get_parser
from pagemark.parsers.epub_parser import EpubMetadata, EpubParser
from pagemark.reading.chapters import validate_chapters
from pagemark.reading.progress import compute_progress

from .models import Book, BookContent
from .repository import Library

log = logging.getLogger(__name__)


class ImportFailed(RuntimeError):
    """The book was parsed but could not be persisted."""


class Importer:
    def __init__(
        self,
        library: Library,
        text_encodings: Optional[Iterable[str]] = None,
        replacement_threshold: Optional[float] = None,
    ) -> None:
        self._library = library
        self._parser_options: dict = {}
        if text_encodings:
            self._parser_options["encodings"] = tuple(text_encodings)
        if replacement_threshold is not None:
            self._parser_options["replacement_threshold"] = replacement_threshold

    async def import_file(self, path: Path) -> Book:
        path = Path(path).expanduser()
        data = await asyncio.to_thread(path.read_bytes)
        return await self.import_bytes(path.name, data)

    async def import_bytes(self, name: str, data: bytes) -> Book:
        """Parse and persist a book.

        Parse errors (MalformedArchive, UnsupportedContent) propagate before
        anything is written. Storage errors raise ImportFailed.
        """
        parser = get_parser(name, **self._parser_options)
        content, meta = await asyncio.to_thread(self._parse, parser, data)
        validate_chapters(content.chapters, len(content.blocks))

        try:
            previous = await self._existing(Book.make_id(data))
        except Exception as e:
            raise ImportFailed(f"Could not read library for {name}: {e}") from e
        book = self._build_book(parser, name, data, content, meta, previous)
        try:
            await self._library.save_content(book.id, content)
            await self._library.save(book)
        except Exception as e:
            log.error("Persisting %s failed: %s", name, e)
            await self._discard(book.id, previous)
            raise ImportFailed(f"Could not save {name}: {e}") from e

        log.info(
            "Imported %s as %s: %d blocks, %d chapters",
            name,
            book.id,
            book.total_blocks,
            book.total_chapters,
        )
        return book

    @staticmethod
    def _parse(parser: BaseParser, data: bytes) -> tuple[BookContent, EpubMetadata]:
        content = parser.parse(data)
        meta = (
            parser.read_metadata(data)
            if isinstance(parser, EpubParser)
            else EpubMetadata()
        )
        return content, meta

    def _build_book(
        self,
        parser: BaseParser,
        name: str,
        data: bytes,
        content: BookContent,
        meta: EpubMetadata,
        existing: Optional[Book] = None,
    ) -> Book:
        book = Book(
            id=Book.make_id(data),
            title=meta.title or parser.strip_extension(name),
            author=meta.author or "Unknown",
            cover=meta.cover,
            format=parser.FORMAT,
            file_size=len(data),
            total_chapters=len(content.chapters),
            total_blocks=len(content.blocks),
            added_at=time.time(),
        )

        if existing is None:
            return book

        # re-import: keep reading history, keep the saved offset valid
        progress = existing.reading_progress
        if progress is not None:
            offset = min(progress.para_offset, max(len(content.blocks) - 1, 0))
            progress = dataclasses.replace(
                progress,
                para_offset=offset,
                progress=compute_progress(offset, len(content.blocks)),
            )
        return dataclasses.replace(
            book,
            added_at=existing.added_at,
            last_read_at=existing.last_read_at,
            total_time=existing.total_time,
            read_count=existing.read_count,
            reading_progress=progress,
        )

    async def _existing(self, book_id: str) -> Optional[Book]:
        book = self._library.get(book_id)
        if book is None:
            # the in-memory index may not be loaded yet
            book = await self._library.storage.get_book(book_id)
        return book

    async def _discard(self, book_id: str, previous: Optional[Book]) -> None:
        if previous is not None:
            # keep the earlier import of the same file
            try:
                await self._library.save(previous)
            except Exception:
                log.exception("Restoring %s after failed import also failed", book_id)
            return
        try:
            await self._library.delete(book_id)
        except Exception:
            log.exception("Cleanup after failed import of %s also failed", book_id)
