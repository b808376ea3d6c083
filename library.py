import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

import reports
import transfer
from book import (
    DESCRIPTIVE_FIELDS,
    Available,
    Book,
    BookStatus,
    Borrowed,
    BorrowRecord,
    Circulation,
    Lost,
    validate_history,
)
from config import settings
from database import SQLiteRecordStore
from exceptions import InvalidState, MalformedInput, NotFound
from validators import TextValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationReady:
    """Emitted when a reserved book comes back and the reader can pick it up."""

    book_id: str
    reader_name: str
    title: str = ""

    def to_dict(self) -> dict:
        return {"bookId": self.book_id, "readerName": self.reader_name, "title": self.title}


Listener = Callable[[ReservationReady], None]


def log_reservation_ready(event: ReservationReady) -> None:
    logger.info("Reservation ready: %r (%s) can now be borrowed by %s", event.title, event.book_id, event.reader_name)


class Library:
    """Lending state machine over a record store.

    Every mutating call loads the full snapshot, checks its preconditions,
    changes one book and writes the snapshot back, all under one lock. A
    failed precondition raises before anything is written.
    """

    def __init__(self, store=None, db_file: Optional[str] = None, *, loan_days: Optional[int] = None,
                 clock: Optional[Callable[[], date]] = None) -> None:
        self.store = store if store is not None else SQLiteRecordStore(db_file)
        self.loan_days = loan_days if loan_days is not None else settings.loan_period_days
        self._clock = clock or date.today
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

    # ------------------------- Catalog ------------------------- #
    def create_or_update(self, fields: Mapping[str, Any], existing_id: Optional[str] = None) -> Book:
        """Create a book, or overwrite the descriptive fields of an existing one.

        On create the id, status and history are assigned here and anything
        the caller supplied for them is ignored. On update the descriptive
        fields are replaced wholesale; the history is kept unless the payload
        carries one under ``borrow_history`` or the export key
        ``borrowHistory``, and ``status`` may only move between AVAILABLE and
        LOST.
        """
        operation = "create" if existing_id is None else "update"
        fields = dict(fields or {})
        title = TextValidator.normalize(fields.get("title"))
        if not TextValidator.validate_title(title):
            raise MalformedInput("title must not be empty", operation=operation, book_id=existing_id)
        descriptive = {name: _text(fields.get(name)) for name in DESCRIPTIVE_FIELDS}
        descriptive["title"] = title

        with self._lock:
            books = self.store.load()
            if existing_id is None:
                book = Book(id=self._new_id({b.id for b in books}), **descriptive)
                books.append(book)
            else:
                index = self._index_of(books, existing_id, operation)
                current = books[index]
                circulation = self._edited_circulation(current, fields.get("status"), operation)
                history = current.borrow_history
                supplied = fields.get("borrow_history")
                if supplied is None:
                    supplied = fields.get("borrowHistory")
                if supplied is not None:
                    history = self._edited_history(supplied, circulation, operation, existing_id)
                book = Book(id=current.id, circulation=circulation, borrow_history=history, **descriptive)
                books[index] = book
            self.store.replace_all(books)

        logger.info("Book %s %sd: %s", book.id, operation, book.title)
        return book

    def delete_book(self, book_id: str) -> None:
        with self._lock:
            books = self.store.load()
            index = self._index_of(books, book_id, "delete")
            removed = books.pop(index)
            self.store.replace_all(books)
        logger.info("Book %s deleted (%s)", removed.id, removed.status.value)

    # ------------------------- Circulation ------------------------- #
    def borrow(self, book_id: str, borrower_name: str) -> Book:
        name = self._required_name(borrower_name, "borrow", book_id, "borrower name")
        with self._lock:
            books = self.store.load()
            book = books[self._index_of(books, book_id, "borrow")]
            if book.status is not BookStatus.AVAILABLE:
                raise InvalidState(f"book {book_id!r} is {book.status.value}, only available books can be borrowed",
                                   operation="borrow", book_id=book_id)
            today = self._clock()
            borrow_date = today.isoformat()
            due_date = (today + timedelta(days=self.loan_days)).isoformat()
            book.circulation = Borrowed(name, borrow_date, due_date)
            book.borrow_history.append(BorrowRecord(name, borrow_date))
            self.store.replace_all(books)

        logger.info("Book %s borrowed by %s, due %s", book_id, name, due_date)
        return book

    def return_book(self, book_id: str) -> Book:
        """Close the open loan and make the book available again.

        A pending reservation is cleared and announced to listeners as a
        ReservationReady event; the book is not lent to that reader.
        """
        with self._lock:
            books = self.store.load()
            book = books[self._index_of(books, book_id, "return")]
            if not isinstance(book.circulation, Borrowed):
                raise InvalidState(f"book {book_id!r} is {book.status.value}, only borrowed books can be returned",
                                   operation="return", book_id=book_id)
            reserved_by = book.circulation.reserved_by
            book.close_open_record(self._clock().isoformat())
            book.circulation = Available()
            self.store.replace_all(books)

        logger.info("Book %s returned", book_id)
        if reserved_by:
            self._emit(ReservationReady(book.id, reserved_by, book.title))
        return book

    def reserve(self, book_id: str, reader_name: str) -> Book:
        name = self._required_name(reader_name, "reserve", book_id, "reader name")
        with self._lock:
            books = self.store.load()
            book = books[self._index_of(books, book_id, "reserve")]
            if not isinstance(book.circulation, Borrowed):
                reason = "borrow it directly" if book.status is BookStatus.AVAILABLE else "it cannot be reserved"
                raise InvalidState(f"book {book_id!r} is {book.status.value}, {reason}",
                                   operation="reserve", book_id=book_id)
            if book.circulation.reserved_by:
                raise InvalidState(f"book {book_id!r} is already reserved by {book.circulation.reserved_by}",
                                   operation="reserve", book_id=book_id)
            book.circulation = book.circulation.with_reservation(name)
            self.store.replace_all(books)

        logger.info("Book %s reserved by %s", book_id, name)
        return book

    def cancel_reservation(self, book_id: str) -> Book:
        with self._lock:
            books = self.store.load()
            book = books[self._index_of(books, book_id, "cancel_reservation")]
            if not isinstance(book.circulation, Borrowed) or not book.circulation.reserved_by:
                return book
            reader = book.circulation.reserved_by
            book.circulation = book.circulation.with_reservation(None)
            self.store.replace_all(books)

        logger.info("Reservation of book %s by %s cancelled", book_id, reader)
        return book

    def mark_lost(self, book_id: str) -> Book:
        """Write a copy off. A lent copy has its loan closed and reservation dropped."""
        with self._lock:
            books = self.store.load()
            book = books[self._index_of(books, book_id, "mark_lost")]
            if book.status is BookStatus.LOST:
                raise InvalidState(f"book {book_id!r} is already LOST", operation="mark_lost", book_id=book_id)
            dropped = book.reserved_by
            if isinstance(book.circulation, Borrowed):
                book.close_open_record(self._clock().isoformat())
            book.circulation = Lost()
            self.store.replace_all(books)

        logger.warning("Book %s marked lost", book_id)
        if dropped:
            logger.info("Reservation of book %s by %s dropped", book_id, dropped)
        return book

    def mark_found(self, book_id: str) -> Book:
        with self._lock:
            books = self.store.load()
            book = books[self._index_of(books, book_id, "mark_found")]
            if book.status is not BookStatus.LOST:
                raise InvalidState(f"book {book_id!r} is {book.status.value}, only lost books can be found",
                                   operation="mark_found", book_id=book_id)
            book.circulation = Available()
            self.store.replace_all(books)

        logger.info("Book %s found", book_id)
        return book

    # ------------------------- Queries ------------------------- #
    def list_books(self) -> List[Book]:
        return self.store.load()

    def find_book(self, book_id: str) -> Optional[Book]:
        for book in self.store.load():
            if book.id == book_id:
                return book
        return None

    def get_book(self, book_id: str) -> Book:
        book = self.find_book(book_id)
        if book is None:
            raise NotFound(f"no book with id {book_id!r}", operation="get", book_id=book_id)
        return book

    def search_books(self, query: str = "", category: Optional[str] = None) -> List[Book]:
        """Case-insensitive title/author match, optionally within one category."""
        term = (query or "").strip().lower()
        results = []
        for book in self.store.load():
            if term and term not in book.title.lower() and term not in book.author.lower():
                continue
            if category and book.category != category:
                continue
            results.append(book)
        return results

    def categories(self) -> List[str]:
        return list(reports.category_distribution(self.store.load()))

    def today(self) -> date:
        return self._clock()

    def get_statistics(self) -> Dict[str, int]:
        return reports.library_summary(self.store.load(), self._clock())

    # ------------------------- Bulk transfer ------------------------- #
    def export_snapshot(self) -> str:
        return transfer.export_snapshot(self.store.load())

    def import_snapshot(self, blob) -> int:
        """Replace the whole collection with a decoded snapshot; returns the book count."""
        books = transfer.import_snapshot(blob)
        with self._lock:
            self.store.replace_all(books)
        logger.info("Imported %d books, previous collection replaced", len(books))
        return len(books)

    # ------------------------- Notifications ------------------------- #
    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: ReservationReady) -> None:
        # Runs outside the lock; a failing listener must not affect lending.
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Reservation listener %r failed for book %s", listener, event.book_id)

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _index_of(books: List[Book], book_id: str, operation: str) -> int:
        for index, book in enumerate(books):
            if book.id == book_id:
                return index
        raise NotFound(f"no book with id {book_id!r}", operation=operation, book_id=book_id)

    @staticmethod
    def _new_id(taken) -> str:
        new_id = uuid.uuid4().hex[:12]
        while new_id in taken:
            new_id = uuid.uuid4().hex[:12]
        return new_id

    @staticmethod
    def _required_name(raw: Optional[str], operation: str, book_id: str, label: str) -> str:
        name = TextValidator.normalize(raw)
        if not TextValidator.validate_name(name):
            raise MalformedInput(f"{label} must not be empty", operation=operation, book_id=book_id)
        return name

    @staticmethod
    def _edited_circulation(current: Book, requested: Any, operation: str) -> Circulation:
        if requested is None or requested == "":
            return current.circulation
        try:
            target = requested if isinstance(requested, BookStatus) else BookStatus(str(requested).upper())
        except ValueError as exc:
            raise MalformedInput(f"unknown status {requested!r}", operation=operation, book_id=current.id) from exc
        if target is current.status:
            return current.circulation
        if BookStatus.BORROWED in (target, current.status):
            raise InvalidState(f"cannot change status from {current.status.value} to {target.value} by editing, "
                               "use borrow or return", operation=operation, book_id=current.id)
        return Available() if target is BookStatus.AVAILABLE else Lost()

    @staticmethod
    def _edited_history(raw: Any, circulation: Circulation, operation: str, book_id: str) -> List[BorrowRecord]:
        try:
            history = [r if isinstance(r, BorrowRecord) else BorrowRecord.from_dict(r) for r in raw]
            validate_history(history)
        except (TypeError, ValueError) as exc:
            raise MalformedInput(f"invalid borrow history ({exc})", operation=operation, book_id=book_id) from exc
        if history and history[-1].is_open and not isinstance(circulation, Borrowed):
            raise MalformedInput("borrow history does not match the book's loan state",
                                 operation=operation, book_id=book_id)
        return history


def _text(value: Any) -> str:
    if value is None:
        return ""
    return TextValidator.normalize(value) if not isinstance(value, str) else value.strip()
