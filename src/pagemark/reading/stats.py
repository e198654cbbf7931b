"""Reading statistics and display formatting."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from pagemark.library.models import Book


@dataclass
class ReadingStats:
    total_books: int = 0
    total_reading_time: int = 0  # minutes
    average_progress: float = 0.0
    recently_read: list[Book] = field(default_factory=list)


def reading_stats(books: Iterable[Book], recent: int = 5) -> ReadingStats:
    """Aggregate over books that have been opened at least once."""
    started = [b for b in books if b.reading_progress is not None]
    if not started:
        return ReadingStats()

    total_time = sum(b.reading_progress.reading_time for b in started)
    average = round(sum(b.reading_progress.progress for b in started) / len(started), 2)
    recently = sorted(
        started, key=lambda b: b.reading_progress.last_read_at, reverse=True
    )[:recent]
    return ReadingStats(
        total_books=len(started),
        total_reading_time=total_time,
        average_progress=average,
        recently_read=recently,
    )


def format_minutes(minutes: int | None) -> str:
    if not minutes:
        return "0m"
    hours, mins = divmod(minutes, 60)
    if hours == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"
