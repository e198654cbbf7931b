"""Block index -> chapter lookup."""

from __future__ import annotations

from bisect import bisect_right
from typing import Optional, Sequence

from pagemark.library.models import Chapter


def _start(chapter: Chapter) -> int:
    return chapter.block_start_index


def locate(chapters: Sequence[Chapter], block_index: int) -> int:
    """Index of the chapter containing ``block_index``, or -1 if there are none.

    Chapters are sorted, contiguous ranges, so this is a binary search for
    the rightmost chapter whose start is <= ``block_index``. Empty chapters
    share their start with the next one; the later chapter wins. Indices
    before the first chapter map to chapter 0.
    """
    if not chapters:
        return -1
    pos = bisect_right(chapters, block_index, key=_start)
    return max(0, pos - 1)


def chapter_at(chapters: Sequence[Chapter], block_index: int) -> Optional[Chapter]:
    idx = locate(chapters, block_index)
    return chapters[idx] if idx >= 0 else None


def validate_chapters(chapters: Sequence[Chapter], total_blocks: int) -> None:
    """Raise ValueError unless ``chapters`` tile ``[0, total_blocks)`` in order."""
    if not chapters:
        return
    expected = 0
    for i, ch in enumerate(chapters):
        if ch.index != i:
            raise ValueError(f"Chapter {i} has index {ch.index}")
        if ch.block_start_index != expected:
            raise ValueError(
                f"Chapter {i} starts at {ch.block_start_index}, expected {expected}"
            )
        if ch.block_end_index < ch.block_start_index:
            raise ValueError(f"Chapter {i} ends before it starts")
        expected = ch.block_end_index
    if expected != total_blocks:
        raise ValueError(f"Chapters end at {expected}, content has {total_blocks}")

