"""Bridges the rendering widget's event stream to the progress tracker."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from pagemark.library.models import BookContent, Chapter

from .chapters import locate
from .progress import ProgressTracker, compute_progress
from .timers import Debouncer, Throttler

log = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5
DEFAULT_THROTTLE_SECONDS = 0.2


@dataclass(frozen=True)
class ScrollToIndex:
    index: int


@dataclass(frozen=True)
class ScrollToProgress:
    progress: float  # 0 - 100
    index: int


class ReaderSession:
    """One open book in the reader.

    Range events come in at scroll rate. Position writes are debounced; the
    current-chapter lookup is throttled so the label keeps up while
    scrolling. Nothing here raises into the rendering path.
    """

    def __init__(
        self,
        tracker: ProgressTracker,
        book_id: str,
        content: BookContent,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        throttle_seconds: float = DEFAULT_THROTTLE_SECONDS,
        on_chapter_changed: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.tracker = tracker
        self.book_id = book_id
        self.content = content
        self.current_index = 0
        self.current_chapter_index = 0 if content.chapters else -1
        self._on_chapter_changed = on_chapter_changed
        self._saver: Debouncer[int] = Debouncer(debounce_seconds, self._save)
        self._chapter_tracker: Throttler[int] = Throttler(
            throttle_seconds, self._update_chapter
        )
        self._closing: Optional[asyncio.Task] = None

    @property
    def total_blocks(self) -> int:
        return len(self.content.blocks)

    @property
    def chapters(self) -> list[Chapter]:
        return self.content.chapters

    @property
    def current_chapter(self) -> Optional[Chapter]:
        if self.current_chapter_index < 0:
            return None
        return self.chapters[self.current_chapter_index]

    @property
    def progress(self) -> float:
        return compute_progress(self.current_index, self.total_blocks)

    # ── Lifecycle ──────────────────────────────────────

    async def open(self) -> Optional[ScrollToIndex]:
        """Start a reading session and return where to restore the view."""
        saved = self.tracker.get(self.book_id)
        await self._safely(self.tracker.start_session(self.book_id), "start session")
        if saved is None or not self.total_blocks:
            return None
        index = min(max(saved.para_offset, 0), self.total_blocks - 1)
        self.current_index = index
        self._update_chapter(index)
        return ScrollToIndex(index)

    async def on_visibility_changed(self, hidden: bool) -> None:
        if hidden:
            await self._save_and_end()
        else:
            await self._safely(
                self.tracker.start_session(self.book_id), "start session"
            )

    async def close(self) -> None:
        """Save position and end the session. Never raises."""
        self._chapter_tracker.cancel()
        await self._save_and_end()

    def close_nowait(self) -> Optional[asyncio.Task]:
        """Fire-and-forget ``close`` for synchronous teardown paths.

        Returns None when no event loop is running; nothing is saved then.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning(
                "No running event loop, session for %s not closed", self.book_id
            )
            return None
        if self._closing is None or self._closing.done():
            self._closing = loop.create_task(self.close())
        return self._closing

    # ── Events from the rendering widget ───────────────

    def on_range_changed(self, start_index: int, end_index: int) -> None:
        self.current_index = start_index
        # the first render reports 0 before the saved position is restored
        if start_index > 0:
            self._saver.schedule(start_index)
        self._chapter_tracker.schedule(end_index)

    # ── Navigation instructions ────────────────────────

    def scroll_to_progress(self, progress: float) -> ScrollToProgress:
        progress = min(max(progress, 0.0), 100.0)
        if not self.total_blocks:
            return ScrollToProgress(progress, 0)
        index = min(int(progress / 100 * self.total_blocks), self.total_blocks - 1)
        return ScrollToProgress(progress, index)

    def scroll_to_chapter(self, chapter_index: int) -> Optional[ScrollToIndex]:
        if not 0 <= chapter_index < len(self.chapters):
            log.warning("Invalid chapter index %d", chapter_index)
            return None
        chapter = self.chapters[chapter_index]
        target = chapter.block_start_index
        if chapter.is_empty:
            log.warning("Chapter %d (%s) is empty", chapter_index, chapter.title)
        if not 0 <= target < self.total_blocks:
            log.warning("Chapter %d starts out of range at %d", chapter_index, target)
            return None
        return ScrollToIndex(target)

    # ── Internals ──────────────────────────────────────

    def _update_chapter(self, block_index: int) -> None:
        if not self.chapters:
            return
        index = locate(self.chapters, block_index)
        if index != self.current_chapter_index:
            self.current_chapter_index = index
            if self._on_chapter_changed is not None:
                self._on_chapter_changed(index)

    def _chapter_title_at(self, block_index: int) -> Optional[str]:
        if not self.chapters:
            return None
        return self.chapters[locate(self.chapters, block_index)].title

    async def _save(self, index: int) -> None:
        if not self.total_blocks:
            return
        await self.tracker.update(
            self.book_id, index, self.total_blocks, self._chapter_title_at(index)
        )

    async def _save_and_end(self) -> None:
        self._saver.cancel()
        if self.current_index > 0:
            await self._safely(self._save(self.current_index), "save position")
        await self._safely(self.tracker.end_session(self.book_id), "end session")

    @staticmethod
    async def _safely(coro, what: str) -> None:
        try:
            await coro
        except Exception:
            log.exception("Failed to %s", what)
