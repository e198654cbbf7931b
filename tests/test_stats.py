"""Tests for reading statistics and formatting helpers."""

from pagemark.library.models import Book, ReadingProgress
from pagemark.reading.stats import format_file_size, format_minutes, reading_stats


def _book(book_id: str, progress: float, minutes: int, last_read: float) -> Book:
    return Book(
        id=book_id,
        title=book_id,
        reading_progress=ReadingProgress(
            book_id=book_id,
            progress=progress,
            reading_time=minutes,
            last_read_at=last_read,
        ),
    )


class TestReadingStats:
    def test_empty(self):
        stats = reading_stats([])
        assert stats.total_books == 0
        assert stats.total_reading_time == 0
        assert stats.average_progress == 0.0
        assert stats.recently_read == []

    def test_only_started_books_count(self):
        books = [
            _book("a", 50.0, 30, 100.0),
            _book("b", 25.0, 15, 300.0),
            Book(id="c", title="unopened"),
        ]
        stats = reading_stats(books)
        assert stats.total_books == 2
        assert stats.total_reading_time == 45
        assert stats.average_progress == 37.5
        assert [b.id for b in stats.recently_read] == ["b", "a"]

    def test_average_rounded(self):
        books = [_book(str(i), p, 0, i) for i, p in enumerate([10.0, 10.0, 10.01])]
        assert reading_stats(books).average_progress == 10.0

    def test_recent_limit(self):
        books = [_book(str(i), 0.0, 0, float(i)) for i in range(8)]
        recent = reading_stats(books, recent=3).recently_read
        assert [b.id for b in recent] == ["7", "6", "5"]


class TestFormatMinutes:
    def test_zero(self):
        assert format_minutes(0) == "0m"
        assert format_minutes(None) == "0m"

    def test_minutes(self):
        assert format_minutes(45) == "45m"

    def test_whole_hours(self):
        assert format_minutes(120) == "2h"

    def test_hours_and_minutes(self):
        assert format_minutes(65) == "1h 5m"


class TestFormatFileSize:
    def test_zero(self):
        assert format_file_size(0) == "0 Bytes"

    def test_bytes(self):
        assert format_file_size(512) == "512 Bytes"

    def test_kilobytes(self):
        assert format_file_size(1536) == "1.5 KB"

    def test_megabytes(self):
        assert format_file_size(5 * 1024 * 1024) == "5 MB"

    def test_rounding(self):
        assert format_file_size(1234567) == "1.18 MB"
