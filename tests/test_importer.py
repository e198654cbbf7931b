"""Tests for the import pipeline."""

from __future__ import annotations

import dataclasses
import gzip
import sqlite3
from pathlib import Path

import pytest

from conftest import PNG_BYTES, make_epub, xhtml
from pagemark.library.database import Database
from pagemark.library.importer import ImportFailed, Importer
from pagemark.library.models import Book, ReadingProgress
from pagemark.library.repository import Library
from pagemark.library.storage import BookStorage
from pagemark.parsers.base import MalformedArchive, UnsupportedContent, UnsupportedFormat

TEXT = "第一章\n\nIt was a dark night.\n   \nThe end."


class BrokenStorage(BookStorage):
    async def save_book(self, book: Book) -> None:
        raise sqlite3.OperationalError("disk full")


class TestImportText:
    @pytest.mark.asyncio
    async def test_book_record(self, library: Library):
        data = TEXT.encode("utf-8")
        book = await Importer(library).import_bytes("My Notes.txt", data)
        assert book.id == Book.make_id(data)
        assert book.title == "My Notes"
        assert book.author == "Unknown"
        assert book.format == "txt"
        assert book.file_size == len(data)
        assert book.total_blocks == 5
        assert book.total_chapters == 0
        assert book.reading_progress is None
        assert library.get(book.id) is book

    @pytest.mark.asyncio
    async def test_lines_round_trip(self, library: Library):
        book = await Importer(library).import_bytes("a.txt", TEXT.encode("utf-8"))
        content = await library.get_content(book.id)
        assert [b.text for b in content.blocks] == TEXT.split("\n")

    @pytest.mark.asyncio
    async def test_persisted(self, library: Library, storage: BookStorage):
        book = await Importer(library).import_bytes("a.txt", b"x\ny")
        assert (await storage.get_book(book.id)).title == "a"

    @pytest.mark.asyncio
    async def test_gzip(self, library: Library):
        data = gzip.compress(TEXT.encode("utf-8"))
        book = await Importer(library).import_bytes("notes.txt.gz", data)
        assert book.title == "notes"
        assert book.total_blocks == 5

    @pytest.mark.asyncio
    async def test_configured_encodings(self, library: Library):
        importer = Importer(library, text_encodings=["utf-8", "big5"])
        book = await importer.import_bytes("tw.txt", "繁體中文".encode("big5"))
        content = await library.get_content(book.id)
        assert content.blocks[0].text == "繁體中文"

    @pytest.mark.asyncio
    async def test_import_file(self, library: Library, tmp_path: Path):
        f = tmp_path / "From Disk.txt"
        f.write_text("hello\nworld", encoding="utf-8")
        book = await Importer(library).import_file(f)
        assert book.title == "From Disk"
        assert book.total_blocks == 2


class TestImportEpub:
    @pytest.mark.asyncio
    async def test_metadata_and_chapters(self, library: Library):
        data = make_epub(
            [
                ("c1.xhtml", xhtml("<p>one</p>", "One")),
                ("c2.xhtml", xhtml('<img src="img/gone.png"/><p>two</p>', "Two")),
                ("c3.xhtml", xhtml("<p>three</p>", "Three")),
            ],
            title="A Novel",
            author="Someone",
            resources={"img/cover.png": PNG_BYTES},
        )
        book = await Importer(library).import_bytes("download.epub", data)
        assert book.title == "A Novel"
        assert book.author == "Someone"
        assert book.format == "epub"
        assert book.total_chapters == 3
        assert book.total_blocks == 4
        assert book.cover.startswith("data:image/png;base64,")

        content = await library.get_content(book.id)
        assert [c.title for c in content.chapters] == ["One", "Two", "Three"]
        assert content.blocks[1].missing

    @pytest.mark.asyncio
    async def test_malformed_writes_nothing(self, library: Library, storage: BookStorage):
        data = make_epub([("c1.xhtml", xhtml("<p>x</p>"))], include_container=False)
        with pytest.raises(MalformedArchive):
            await Importer(library).import_bytes("broken.epub", data)
        assert len(library) == 0
        assert await storage.list_books() == []
        assert await storage.get_book_content(Book.make_id(data)) is None

    @pytest.mark.asyncio
    async def test_empty_book(self, library: Library):
        data = make_epub([("c1.xhtml", xhtml(""))])
        with pytest.raises(UnsupportedContent):
            await Importer(library).import_bytes("empty.epub", data)
        assert len(library) == 0


class TestImportErrors:
    @pytest.mark.asyncio
    async def test_unsupported_format(self, library: Library):
        with pytest.raises(UnsupportedFormat):
            await Importer(library).import_bytes("scan.pdf", b"%PDF-1.4")
        assert len(library) == 0

    @pytest.mark.asyncio
    async def test_storage_failure_cleans_up(self, db: Database):
        storage = BrokenStorage(db)
        library = Library(storage)
        data = b"some text"
        with pytest.raises(ImportFailed) as exc_info:
            await Importer(library).import_bytes("a.txt", data)
        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)
        assert Book.make_id(data) not in library
        assert await storage.get_book_content(Book.make_id(data)) is None


class TestReimport:
    @pytest.mark.asyncio
    async def test_keeps_reading_history(self, library: Library):
        importer = Importer(library)
        data = TEXT.encode("utf-8")
        first = await importer.import_bytes("a.txt", data)
        progress = ReadingProgress(
            book_id=first.id, para_offset=2, progress=40.0, reading_time=9
        )
        await library.save(
            dataclasses.replace(
                first, total_time=9, read_count=3, reading_progress=progress
            )
        )

        again = await importer.import_bytes("renamed.txt", data)
        assert again.id == first.id
        assert again.title == "renamed"
        assert again.added_at == first.added_at
        assert again.total_time == 9
        assert again.read_count == 3
        assert again.reading_progress.para_offset == 2
        assert again.reading_progress.reading_time == 9
        assert len(library) == 1

    @pytest.mark.asyncio
    async def test_clamps_saved_offset(self, library: Library):
        importer = Importer(library)
        data = b"one\ntwo\nthree"
        first = await importer.import_bytes("a.txt", data)
        await library.save(
            dataclasses.replace(
                first,
                reading_progress=ReadingProgress(book_id=first.id, para_offset=50),
            )
        )
        again = await importer.import_bytes("a.txt", data)
        assert again.reading_progress.para_offset == 2
        assert again.reading_progress.progress == 66.67

    @pytest.mark.asyncio
    async def test_unloaded_library_keeps_history(self, storage: BookStorage):
        data = TEXT.encode("utf-8")
        first = await Importer(Library(storage)).import_bytes("a.txt", data)
        await storage.save_book(
            dataclasses.replace(
                first,
                read_count=2,
                reading_progress=ReadingProgress(book_id=first.id, para_offset=3),
            )
        )

        fresh = Library(storage)
        again = await Importer(fresh).import_bytes("a.txt", data)
        assert again.added_at == first.added_at
        assert again.read_count == 2
        assert again.reading_progress.para_offset == 3

    @pytest.mark.asyncio
    async def test_failed_reimport_keeps_stored_record(
        self, db: Database, storage: BookStorage
    ):
        data = b"some text"
        first = await Importer(Library(storage)).import_bytes("a.txt", data)

        with pytest.raises(ImportFailed):
            await Importer(Library(BrokenStorage(db))).import_bytes("a.txt", data)
        stored = await storage.get_book(first.id)
        assert stored is not None
        assert stored.title == "a"
        assert await storage.get_book_content(first.id) is not None
