"""In-memory book index backed by async storage."""

from __future__ import annotations

import logging
from typing import Optional

from .models import Book, BookContent
from .storage import BookStorage

log = logging.getLogger(__name__)


class Library:
    """Owns the in-memory book index for one application lifetime.

    Reads are served from the index. Mutations update the index first, then
    write through to storage, and return the updated record. Storage errors
    propagate; the index keeps the new value so the next write retries it.
    """

    def __init__(self, storage: BookStorage) -> None:
        self.storage = storage
        self._books: dict[str, Book] = {}

    async def load(self) -> list[Book]:
        books = await self.storage.list_books()
        self._books = {b.id: b for b in books}
        log.debug("Loaded %d books", len(books))
        return books

    @property
    def books(self) -> list[Book]:
        return list(self._books.values())

    def get(self, book_id: str) -> Optional[Book]:
        return self._books.get(book_id)

    def __contains__(self, book_id: object) -> bool:
        return book_id in self._books

    def __len__(self) -> int:
        return len(self._books)

    async def save(self, book: Book) -> Book:
        self._books[book.id] = book
        await self.storage.save_book(book)
        return book

    async def get_content(self, book_id: str) -> Optional[BookContent]:
        return await self.storage.get_book_content(book_id)

    async def save_content(self, book_id: str, content: BookContent) -> BookContent:
        await self.storage.save_book_content(book_id, content)
        return content

    async def delete(self, book_id: str) -> Optional[Book]:
        """Remove a book and its content. Returns the removed record."""
        book = self._books.pop(book_id, None)
        await self.storage.delete_book_content(book_id)
        await self.storage.delete_book(book_id)
        if book is not None:
            log.info("Deleted book %s (%s)", book.id, book.title)
        return book
