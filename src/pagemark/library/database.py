"""SQLite database for book metadata (with embedded reading progress) and content."""

from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Optional

from .models import Book, ReadingProgress

_SCHEMA = """
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    author TEXT DEFAULT 'Unknown',
    cover TEXT DEFAULT '',
    format TEXT DEFAULT '',
    file_size INTEGER DEFAULT 0,
    total_chapters INTEGER DEFAULT 0,
    total_blocks INTEGER DEFAULT 0,
    added_at REAL NOT NULL,
    last_read_at REAL,
    total_time INTEGER DEFAULT 0,
    read_count INTEGER DEFAULT 0,
    reading_progress TEXT
);

CREATE TABLE IF NOT EXISTS book_contents (
    book_id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    updated_at REAL NOT NULL
);
"""


class Database:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # ── Books ──────────────────────────────────────────────

    def save_book(self, book: Book) -> None:
        progress = (
            json.dumps(book.reading_progress.to_dict())
            if book.reading_progress
            else None
        )
        self._conn.execute(
            """INSERT OR REPLACE INTO books
               (id, title, author, cover, format, file_size, total_chapters,
                total_blocks, added_at, last_read_at, total_time, read_count,
                reading_progress)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                book.id,
                book.title,
                book.author,
                book.cover,
                book.format,
                book.file_size,
                book.total_chapters,
                book.total_blocks,
                book.added_at,
                book.last_read_at,
                book.total_time,
                book.read_count,
                progress,
            ),
        )
        self._conn.commit()

    def delete_book(self, book_id: str) -> None:
        self._conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        self._conn.commit()

    def get_book(self, book_id: str) -> Optional[Book]:
        row = self._conn.execute(
            "SELECT * FROM books WHERE id = ?", (book_id,)
        ).fetchone()
        return self._row_to_book(row) if row else None

    def list_books(self, order_by: str = "last_read_at DESC") -> list[Book]:
        allowed = {
            "last_read_at DESC",
            "last_read_at ASC",
            "title ASC",
            "title DESC",
            "added_at DESC",
            "added_at ASC",
            "author ASC",
            "author DESC",
        }
        if order_by not in allowed:
            order_by = "last_read_at DESC"
        rows = self._conn.execute(
            f"SELECT * FROM books ORDER BY {order_by} NULLS LAST"
        ).fetchall()
        return [self._row_to_book(r) for r in rows]

    @staticmethod
    def _row_to_book(row: sqlite3.Row) -> Book:
        progress = row["reading_progress"]
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            cover=row["cover"],
            format=row["format"],
            file_size=row["file_size"],
            total_chapters=row["total_chapters"],
            total_blocks=row["total_blocks"],
            added_at=row["added_at"],
            last_read_at=row["last_read_at"],
            total_time=row["total_time"],
            read_count=row["read_count"],
            reading_progress=(
                ReadingProgress.from_dict(json.loads(progress)) if progress else None
            ),
        )

    # ── Book content ───────────────────────────────────────

    def save_book_content(self, book_id: str, content: str) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO book_contents (book_id, content, updated_at)
               VALUES (?, ?, ?)""",
            (book_id, content, time.time()),
        )
        self._conn.commit()

    def get_book_content(self, book_id: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT content FROM book_contents WHERE book_id = ?", (book_id,)
        ).fetchone()
        return row["content"] if row else None

    def delete_book_content(self, book_id: str) -> None:
        self._conn.execute("DELETE FROM book_contents WHERE book_id = ?", (book_id,))
        self._conn.commit()
