from typing import Optional


class LibraryError(Exception):
    """Base exception for lending operations.

    Carries the operation name and the book id so the message can be shown
    to a caller as-is.
    """

    def __init__(self, message: str, *, operation: Optional[str] = None, book_id: Optional[str] = None) -> None:
        self.operation = operation
        self.book_id = book_id
        self.message = message
        super().__init__(self._format())

    def _format(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class NotFound(LibraryError, LookupError):
    """The referenced book id does not exist."""


class InvalidState(LibraryError):
    """The operation is not legal in the book's current status."""


class MalformedInput(LibraryError, ValueError):
    """A payload is not structurally what the operation expects."""
