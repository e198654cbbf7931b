"""Async persistence interface over the SQLite database.

Calls run in a worker thread and are serialized, since the connection is
shared. Every method may raise; callers decide whether a failure is fatal.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Callable, Optional, TypeVar

from .database import Database
from .models import Book, BookContent

T = TypeVar("T")


class BookStorage:
    def __init__(self, db: Database) -> None:
        self._db = db
        self._lock = asyncio.Lock()

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        async with self._lock:
            return await asyncio.to_thread(functools.partial(fn, *args))

    async def list_books(self) -> list[Book]:
        return await self._call(self._db.list_books)

    async def get_book(self, book_id: str) -> Optional[Book]:
        return await self._call(self._db.get_book, book_id)

    async def save_book(self, book: Book) -> None:
        await self._call(self._db.save_book, book)

    async def delete_book(self, book_id: str) -> None:
        await self._call(self._db.delete_book, book_id)

    async def get_book_content(self, book_id: str) -> Optional[BookContent]:
        raw = await self._call(self._db.get_book_content, book_id)
        if raw is None:
            return None
        return BookContent.from_json(raw)

    async def save_book_content(self, book_id: str, content: BookContent) -> None:
        await self._call(self._db.save_book_content, book_id, content.to_json())

    async def delete_book_content(self, book_id: str) -> None:
        await self._call(self._db.delete_book_content, book_id)
