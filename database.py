import copy
import json
import logging
import os
import sqlite3
import sys
import tempfile
import threading
from typing import List, Optional, Sequence

from dotenv import load_dotenv

from book import Book
from exceptions import MalformedInput
from transfer import import_snapshot

# Make sure .env is loaded before the environment is read below, whatever
# order the modules were imported in.
load_dotenv()

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE (explicit override)
# 2) LIBRARY_DATA_FILE (older name, still honoured)
# 3) per-process temp file
DATABASE_FILE = (
    os.environ.get("LIBRARY_DB_FILE")
    or os.environ.get("LIBRARY_DATA_FILE")
    or os.path.join(tempfile.gettempdir(), f"libgenius_{os.getpid()}.db")
)


def _under_pytest() -> bool:
    return bool(os.environ.get("PYTEST_CURRENT_TEST")) or "pytest" in sys.modules


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database."""
    conn = sqlite3.connect(db_file or DATABASE_FILE, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the snapshot table if it does not exist yet."""
    conn = get_db_connection(db_file)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                position INTEGER NOT NULL,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_position ON books(position)")
        conn.commit()
    finally:
        conn.close()


class MemoryRecordStore:
    """In-process record store. Keeps serialized copies so callers never share state."""

    def __init__(self, books: Sequence[Book] = ()) -> None:
        self._lock = threading.Lock()
        self._rows: List[dict] = [book.to_dict() for book in books]

    def load(self) -> List[Book]:
        with self._lock:
            rows = copy.deepcopy(self._rows)
        return [Book.from_dict(row) for row in rows]

    def replace_all(self, books: Sequence[Book]) -> None:
        rows = [book.to_dict() for book in books]
        with self._lock:
            self._rows = rows


class SQLiteRecordStore:
    """Record store backed by a single SQLite table.

    The whole collection is rewritten inside one transaction, so readers see
    either the previous snapshot or the new one.
    """

    def __init__(self, db_file: Optional[str] = None, seed_file: Optional[str] = None) -> None:
        self.db_file = db_file or DATABASE_FILE
        create_tables(self.db_file)
        if seed_file is None and not _under_pytest():
            from config import settings
            seed_file = settings.seed_file
        if seed_file:
            seed_from_json(self, seed_file)

    def load(self) -> List[Book]:
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute("SELECT payload FROM books ORDER BY position").fetchall()
            return [Book.from_dict(json.loads(row["payload"])) for row in rows]
        finally:
            conn.close()

    def replace_all(self, books: Sequence[Book]) -> None:
        rows = [
            (book.id, position, json.dumps(book.to_dict(), ensure_ascii=False))
            for position, book in enumerate(books)
        ]
        conn = get_db_connection(self.db_file)
        try:
            with conn:
                conn.execute("DELETE FROM books")
                conn.executemany("INSERT INTO books (id, position, payload) VALUES (?, ?, ?)", rows)
        finally:
            conn.close()

    def count(self) -> int:
        conn = get_db_connection(self.db_file)
        try:
            return conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
        finally:
            conn.close()


def seed_from_json(store, path: str) -> int:
    """Load an exported snapshot into an empty store.

    One-off initialisation: does nothing when the store already has books or
    the file is missing. Returns the number of books written.
    """

    if store.load():
        return 0
    if not os.path.exists(path):
        logger.warning("Seed file %s not found, starting with an empty collection", path)
        return 0

    try:
        with open(path, "r", encoding="utf-8") as f:
            books = import_snapshot(f.read())
    except (OSError, MalformedInput) as e:
        logger.error("Could not seed library from %s: %s", path, e)
        return 0

    store.replace_all(books)
    logger.info("Seeded %d books from %s", len(books), path)
    return len(books)
