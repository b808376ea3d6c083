"""Derived statistics over a collection snapshot.

Everything here is a pure function of the books passed in. Nothing is cached:
the collection is small and the numbers have to match the current state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Union

from book import Book, BookStatus

DateLike = Union[date, str]

SEVERE = ">30"
MODERATE = "7-30"
RECENT = "<=7"
SEVERITY_BUCKETS = (SEVERE, MODERATE, RECENT)


@dataclass
class ReaderStats:
    name: str
    borrow_count: int = 0
    current_borrowed: int = 0

    def to_dict(self) -> dict:
        return {"name": self.name, "borrowCount": self.borrow_count, "currentBorrowed": self.current_borrowed}


@dataclass(frozen=True)
class HistoryEntry:
    """A borrow record flattened together with the book it belongs to."""

    book_id: str
    book_title: str
    borrower_name: str
    borrow_date: str
    return_date: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "bookId": self.book_id,
            "bookTitle": self.book_title,
            "borrowerName": self.borrower_name,
            "borrowDate": self.borrow_date,
            "returnDate": self.return_date,
        }


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _iso(value: DateLike) -> str:
    return _as_date(value).isoformat()


def overdue_books(books: Sequence[Book], today: DateLike) -> List[Book]:
    """Borrowed books whose due date is before today, in collection order."""
    cutoff = _iso(today)
    return [b for b in books if b.status is BookStatus.BORROWED and b.due_date and b.due_date < cutoff]


def overdue_days(book: Book, today: DateLike) -> int:
    """Whole days past the due date (0 when not overdue or not borrowed)."""
    if not book.due_date:
        return 0
    delta = _as_date(today) - _as_date(book.due_date)
    return max(0, math.ceil(delta.total_seconds() / 86400))


def severity_bucket(days: int) -> str:
    if days > 30:
        return SEVERE
    if days > 7:
        return MODERATE
    return RECENT


def overdue_severity_buckets(books: Sequence[Book], today: DateLike) -> Dict[str, int]:
    buckets = {name: 0 for name in SEVERITY_BUCKETS}
    for book in overdue_books(books, today):
        buckets[severity_bucket(overdue_days(book, today))] += 1
    return buckets


def reader_stats(books: Sequence[Book]) -> List[ReaderStats]:
    """Per-reader totals, most active first.

    Every history record counts towards ``borrow_count``; a book currently out
    counts towards its borrower's ``current_borrowed``. Ties keep the order in
    which readers were first seen.
    """
    stats: Dict[str, ReaderStats] = {}
    for book in books:
        for record in book.borrow_history:
            stats.setdefault(record.borrower_name, ReaderStats(record.borrower_name)).borrow_count += 1
        if book.status is BookStatus.BORROWED and book.borrower_name:
            stats.setdefault(book.borrower_name, ReaderStats(book.borrower_name)).current_borrowed += 1
    return sorted(stats.values(), key=lambda s: s.borrow_count, reverse=True)


def category_distribution(books: Sequence[Book]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for book in books:
        counts[book.category] = counts.get(book.category, 0) + 1
    return counts


def popular_books(books: Sequence[Book], limit: int = 5) -> List[Book]:
    """Most borrowed books first; equal counts keep collection order."""
    ranked = sorted(books, key=lambda b: len(b.borrow_history), reverse=True)
    return ranked[:max(limit, 0)]


def library_summary(books: Sequence[Book], today: DateLike) -> Dict[str, int]:
    return {
        "total_books": len(books),
        "borrowed_books": sum(1 for b in books if b.status is BookStatus.BORROWED),
        "available_books": sum(1 for b in books if b.status is BookStatus.AVAILABLE),
        "lost_books": sum(1 for b in books if b.status is BookStatus.LOST),
        "overdue_books": len(overdue_books(books, today)),
        "reserved_books": sum(1 for b in books if b.reserved_by),
        "total_borrows": sum(len(b.borrow_history) for b in books),
    }


def borrow_records(books: Sequence[Book]) -> List[HistoryEntry]:
    return [
        HistoryEntry(book.id, book.title, r.borrower_name, r.borrow_date, r.return_date)
        for book in books
        for r in book.borrow_history
    ]


def history_summary(books: Sequence[Book]) -> Dict[str, int]:
    """Returned/active counts and the mean loan length of returned loans."""
    entries = borrow_records(books)
    returned = [e for e in entries if e.return_date]
    durations = [(_as_date(e.return_date) - _as_date(e.borrow_date)).days for e in returned]
    return {
        "total_records": len(entries),
        "returned": len(returned),
        "active": len(entries) - len(returned),
        "average_duration_days": round(sum(durations) / len(durations)) if durations else 0,
    }
