from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Union

from validators import DateValidator


class BookStatus(Enum):
    AVAILABLE = "AVAILABLE"
    BORROWED = "BORROWED"
    LOST = "LOST"


@dataclass(frozen=True)
class BorrowRecord:
    """One lending episode. A record without ``return_date`` is the open loan."""

    borrower_name: str
    borrow_date: str
    return_date: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def closed(self, on: str) -> "BorrowRecord":
        if self.return_date is not None:
            raise ValueError("Borrow record is already closed.")
        return replace(self, return_date=on)

    def to_dict(self) -> dict:
        data = {"borrowerName": self.borrower_name, "borrowDate": self.borrow_date}
        if self.return_date is not None:
            data["returnDate"] = self.return_date
        return data

    @staticmethod
    def from_dict(data: Any) -> "BorrowRecord":
        if not isinstance(data, dict):
            raise ValueError("Borrow record must be an object.")
        borrower = data.get("borrowerName")
        borrow_date = data.get("borrowDate")
        return_date = data.get("returnDate")
        if not isinstance(borrower, str) or not isinstance(borrow_date, str):
            raise ValueError("Borrow record needs borrowerName and borrowDate strings.")
        if return_date is not None and not isinstance(return_date, str):
            raise ValueError("Borrow record returnDate must be a string.")
        return BorrowRecord(borrower_name=borrower, borrow_date=borrow_date, return_date=return_date or None)


# Circulation state. Exactly one of these is attached to a book; the borrower
# fields only exist on Borrowed, so a reserved or borrowed-without-dates book
# cannot be built.
@dataclass(frozen=True)
class Available:
    status: ClassVar[BookStatus] = BookStatus.AVAILABLE


@dataclass(frozen=True)
class Borrowed:
    borrower_name: str
    borrow_date: str
    due_date: str
    reserved_by: Optional[str] = None

    status: ClassVar[BookStatus] = BookStatus.BORROWED

    def with_reservation(self, reader_name: Optional[str]) -> "Borrowed":
        return replace(self, reserved_by=reader_name)


@dataclass(frozen=True)
class Lost:
    status: ClassVar[BookStatus] = BookStatus.LOST


Circulation = Union[Available, Borrowed, Lost]


def validate_history(records: Sequence[BorrowRecord]) -> None:
    """Raise ValueError unless every date is YYYY-MM-DD and at most one record
    is open, as the last one."""
    for index, record in enumerate(records):
        for value in (record.borrow_date, record.return_date):
            if value is not None and not DateValidator.is_iso_date(value):
                raise ValueError(f"Borrow record date {value!r} is not YYYY-MM-DD.")
        if record.is_open and index != len(records) - 1:
            raise ValueError("Only the most recent borrow record may be open.")


_DESCRIPTIVE_KEYS = (
    ("title", "title"),
    ("author", "author"),
    ("isbn", "isbn"),
    ("category", "category"),
    ("publish_date", "publishDate"),
    ("summary", "summary"),
    ("cover_url", "coverUrl"),
)

DESCRIPTIVE_FIELDS = tuple(attr for attr, _ in _DESCRIPTIVE_KEYS)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


@dataclass
class Book:
    """A single physical copy in the collection."""

    id: str
    title: str
    author: str = ""
    isbn: str = ""
    category: str = ""
    publish_date: str = ""
    summary: str = ""
    cover_url: str = ""
    circulation: Circulation = field(default_factory=Available)
    borrow_history: List[BorrowRecord] = field(default_factory=list)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.status.value})"

    # Flat read-only view of the circulation state
    @property
    def status(self) -> BookStatus:
        return self.circulation.status

    @property
    def borrower_name(self) -> Optional[str]:
        return self.circulation.borrower_name if isinstance(self.circulation, Borrowed) else None

    @property
    def borrow_date(self) -> Optional[str]:
        return self.circulation.borrow_date if isinstance(self.circulation, Borrowed) else None

    @property
    def due_date(self) -> Optional[str]:
        return self.circulation.due_date if isinstance(self.circulation, Borrowed) else None

    @property
    def reserved_by(self) -> Optional[str]:
        return self.circulation.reserved_by if isinstance(self.circulation, Borrowed) else None

    @property
    def open_record(self) -> Optional[BorrowRecord]:
        if self.borrow_history and self.borrow_history[-1].is_open:
            return self.borrow_history[-1]
        return None

    def close_open_record(self, on: str) -> None:
        """Set the return date of the trailing open record, if there is one."""
        if self.open_record is not None:
            self.borrow_history[-1] = self.borrow_history[-1].closed(on)

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "category": self.category,
            "publishDate": self.publish_date,
            "status": self.status.value,
            "summary": self.summary,
            "coverUrl": self.cover_url,
        }
        if isinstance(self.circulation, Borrowed):
            data["borrowerName"] = self.circulation.borrower_name
            data["borrowDate"] = self.circulation.borrow_date
            data["dueDate"] = self.circulation.due_date
            if self.circulation.reserved_by is not None:
                data["reservedBy"] = self.circulation.reserved_by
        data["borrowHistory"] = [record.to_dict() for record in self.borrow_history]
        return data

    @staticmethod
    def from_dict(data: Any) -> "Book":
        """Build a Book from its exported form.

        Descriptive fields are taken as given. Circulation fields must agree
        with ``status`` and the history must have at most one trailing open
        record; anything else raises ValueError.
        """
        if not isinstance(data, dict):
            raise ValueError("Book record must be an object.")

        raw_id = data.get("id")
        if isinstance(raw_id, int) and not isinstance(raw_id, bool):
            raw_id = str(raw_id)
        if not isinstance(raw_id, str) or not raw_id.strip():
            raise ValueError("Book record needs a non-empty id.")
        if not isinstance(data.get("title"), str):
            raise ValueError(f"Book {raw_id} needs a title.")

        try:
            status = BookStatus(data.get("status") or BookStatus.AVAILABLE.value)
        except ValueError as exc:
            raise ValueError(f"Book {raw_id} has unknown status {data.get('status')!r}.") from exc

        borrower = data.get("borrowerName")
        borrow_date = data.get("borrowDate")
        due_date = data.get("dueDate")
        reserved_by = data.get("reservedBy")

        circulation: Circulation
        if status is BookStatus.BORROWED:
            loan_fields = (borrower, borrow_date, due_date)
            if not all(isinstance(value, str) and value for value in loan_fields):
                raise ValueError(f"Book {raw_id} is borrowed but lacks borrower, borrow date or due date.")
            if not (DateValidator.is_iso_date(borrow_date) and DateValidator.is_iso_date(due_date)):
                raise ValueError(f"Book {raw_id} loan dates must be YYYY-MM-DD.")
            if reserved_by is not None and not isinstance(reserved_by, str):
                raise ValueError(f"Book {raw_id} has a non-string reservation.")
            circulation = Borrowed(borrower, borrow_date, due_date, reserved_by or None)
        else:
            if any(value is not None for value in (borrower, borrow_date, due_date, reserved_by)):
                raise ValueError(f"Book {raw_id} is {status.value} but carries borrower or reservation fields.")
            circulation = Available() if status is BookStatus.AVAILABLE else Lost()

        raw_history = data.get("borrowHistory")
        if raw_history is None:
            raw_history = []
        if not isinstance(raw_history, list):
            raise ValueError(f"Book {raw_id} borrowHistory must be a list.")
        history = [BorrowRecord.from_dict(item) for item in raw_history]
        validate_history(history)
        if history and history[-1].is_open and status is not BookStatus.BORROWED:
            raise ValueError(f"Book {raw_id} is {status.value} but has an open borrow record.")

        fields = {attr: _text(data.get(key)) for attr, key in _DESCRIPTIVE_KEYS}
        return Book(id=raw_id, circulation=circulation, borrow_history=history, **fields)
