"""Reading position and session time tracking.

Per book there are two states. Idle: no ``session_start_time``. Active:
``session_start_time`` is set and elapsed time is owed to the book.

* ``start_session``: Idle|Active -> Active. Re-entering an active session
  first folds the elapsed minutes in, but does not count another read.
* ``update``: records position only. Time is reconciled at session
  boundaries, never per scroll event.
* ``end_session``: Active -> Idle, folding elapsed minutes in. No-op when Idle.

Elapsed time is floored to whole minutes, so sessions under a minute add
nothing.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Callable, Optional

from pagemark.library.models import Book, ReadingProgress
from pagemark.library.repository import Library

log = logging.getLogger(__name__)


def round2(value: float) -> float:
    return round(value, 2)


def compute_progress(block_index: int, total_blocks: int) -> float:
    if total_blocks <= 0:
        return 0.0
    return round2(block_index / total_blocks * 100)


def elapsed_minutes(start: float, now: float) -> int:
    return max(0, int((now - start) // 60))


class ProgressTracker:
    def __init__(self, library: Library, clock: Callable[[], float] = time.time) -> None:
        self._library = library
        self._clock = clock

    def get(self, book_id: str) -> Optional[ReadingProgress]:
        book = self._library.get(book_id)
        return book.reading_progress if book else None

    async def update(
        self,
        book_id: str,
        block_index: int,
        total_blocks: int,
        current_chapter: Optional[str] = None,
    ) -> Optional[Book]:
        if total_blocks <= 0:
            raise ValueError(f"total_blocks must be positive, got {total_blocks}")
        book = self._book(book_id)
        if book is None:
            return None

        now = self._clock()
        offset = min(max(block_index, 0), total_blocks - 1)
        progress = self._progress_of(book)
        progress = dataclasses.replace(
            progress,
            para_offset=offset,
            progress=compute_progress(offset, total_blocks),
            last_read_at=now,
            current_chapter=(
                current_chapter
                if current_chapter is not None
                else progress.current_chapter
            ),
        )
        updated = dataclasses.replace(book, last_read_at=now, reading_progress=progress)
        return await self._persist(updated)

    async def start_session(self, book_id: str) -> Optional[Book]:
        book = self._book(book_id)
        if book is None:
            return None

        now = self._clock()
        progress = self._progress_of(book)
        reading_time = progress.reading_time
        total_time = book.total_time
        read_count = book.read_count

        if progress.session_start_time is not None:
            minutes = elapsed_minutes(progress.session_start_time, now)
            reading_time += minutes
            total_time += minutes
            log.debug("Session re-entered for %s, folded %d min", book_id, minutes)
        else:
            read_count += 1
            log.debug("Session started for %s", book_id)

        progress = dataclasses.replace(
            progress, reading_time=reading_time, session_start_time=now
        )
        updated = dataclasses.replace(
            book,
            total_time=total_time,
            read_count=read_count,
            reading_progress=progress,
        )
        return await self._persist(updated)

    async def end_session(self, book_id: str) -> Optional[Book]:
        book = self._book(book_id)
        if book is None:
            return None
        progress = book.reading_progress
        if progress is None or progress.session_start_time is None:
            return book

        minutes = elapsed_minutes(progress.session_start_time, self._clock())
        progress = dataclasses.replace(
            progress,
            reading_time=progress.reading_time + minutes,
            session_start_time=None,
        )
        updated = dataclasses.replace(
            book, total_time=book.total_time + minutes, reading_progress=progress
        )
        log.debug("Session ended for %s, %d min", book_id, minutes)
        return await self._persist(updated)

    def _book(self, book_id: str) -> Optional[Book]:
        book = self._library.get(book_id)
        if book is None:
            log.warning("Progress event for unknown book %s ignored", book_id)
        return book

    def _progress_of(self, book: Book) -> ReadingProgress:
        if book.reading_progress is not None:
            return book.reading_progress
        return ReadingProgress(book_id=book.id, last_read_at=self._clock())

    async def _persist(self, book: Book) -> Book:
        try:
            await self._library.save(book)
        except Exception:
            # the index already holds the new state; the next write retries it
            log.exception("Failed to persist reading progress for %s", book.id)
        return book
