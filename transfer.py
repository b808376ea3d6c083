"""Whole-collection export and import.

The snapshot format is a JSON array of book records, the same shape the
browser front end writes to its export files, including the full borrow
history of every book.
"""

import json
from typing import List, Sequence, Union

from book import Book
from exceptions import MalformedInput


def export_snapshot(books: Sequence[Book]) -> str:
    """Serialize every book, in collection order."""
    return json.dumps([book.to_dict() for book in books], ensure_ascii=False, indent=2)


def import_snapshot(blob: Union[str, bytes]) -> List[Book]:
    """Decode a snapshot produced by :func:`export_snapshot`.

    Raises MalformedInput if the blob is not a JSON array of book-shaped
    records or repeats an id. Nothing is written here; replacing the
    collection is the caller's job.
    """
    try:
        data = json.loads(blob)
    except (TypeError, ValueError) as exc:
        raise MalformedInput(f"snapshot is not valid JSON ({exc})", operation="import") from exc

    if not isinstance(data, list):
        raise MalformedInput("snapshot must be a JSON array of books", operation="import")

    books: List[Book] = []
    seen = set()
    for index, item in enumerate(data):
        try:
            book = Book.from_dict(item)
        except ValueError as exc:
            raise MalformedInput(f"record {index}: {exc}", operation="import") from exc
        if book.id in seen:
            raise MalformedInput(f"record {index}: duplicate id {book.id!r}", operation="import", book_id=book.id)
        seen.add(book.id)
        books.append(book)
    return books
