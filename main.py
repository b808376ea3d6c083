import asyncio
import logging
import os
import subprocess
import sys
import webbrowser
from pathlib import Path
from typing import NoReturn, Optional

import typer

import database
import reports
from ai_service import BookMetadataService
from config import settings
from exceptions import LibraryError
from library import Library, log_reservation_ready
from ui_helpers import (
    print_book_detail,
    print_list_result,
    print_overdue_result,
    print_readers_result,
    print_stats_result,
    set_output_mode,
)

APP_NAME = "LibGenius CLI"

logger = logging.getLogger(__name__)


class LibraryManager:
    """Holds one Library per database file for the lifetime of the CLI process."""
    _instance: Optional[Library] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> Library:
        current_db = settings.database_file or database.DATABASE_FILE
        if cls._instance is None or current_db != cls._db_file_snapshot:
            cls._instance = Library(db_file=current_db)
            cls._instance.subscribe(log_reservation_ready)
            cls._instance.subscribe(_announce_reservation)
            cls._db_file_snapshot = current_db
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None
        cls._db_file_snapshot = None


def _announce_reservation(event) -> None:
    print(f"Reservation ready: '{event.title}' can now be borrowed by {event.reader_name}.")


def _fail(error: Exception) -> NoReturn:
    print(f"Error: {error}")
    raise typer.Exit(code=1)


# --- Typer CLI app ---
app = typer.Typer(help=APP_NAME)

@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (output mode)."""
    if output:
        set_output_mode(output)

@app.command("list")
def cli_list():
    """List every book in collection order."""
    print_list_result(LibraryManager.get_instance().list_books())

@app.command("find")
def cli_find(book_id: str):
    """Show one book by id."""
    book = LibraryManager.get_instance().find_book(book_id)
    if book is None:
        print(f"Book with id {book_id} not found.")
        raise typer.Exit(code=1)
    print_book_detail(book)

@app.command("search")
def cli_search(
    query: str = typer.Argument("", help="Text to look for in title or author"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Restrict to one category"),
):
    """Search books by title/author, optionally within a category."""
    results = LibraryManager.get_instance().search_books(query, category)
    print_list_result(results, empty_message="No matching books.")

@app.command("add")
def cli_add(
    title: str,
    author: str = typer.Option("", "--author", "-a"),
    isbn: str = typer.Option("", "--isbn"),
    category: str = typer.Option("", "--category", "-c"),
    publish_date: str = typer.Option("", "--publish-date"),
    summary: str = typer.Option("", "--summary"),
    cover_url: str = typer.Option("", "--cover-url"),
    suggest: bool = typer.Option(False, "--suggest", help="Fill empty fields from the AI assistant"),
):
    """Add a book to the catalog."""
    fields = {
        "title": title, "author": author, "isbn": isbn, "category": category,
        "publish_date": publish_date, "summary": summary, "cover_url": cover_url,
    }
    if suggest:
        suggestion = asyncio.run(BookMetadataService().suggest_book_metadata(title))
        if suggestion is None:
            print("No suggestion available, adding with the given fields.")
        else:
            fields = suggestion.merged_into(fields)
    try:
        book = LibraryManager.get_instance().create_or_update(fields)
    except LibraryError as e:
        _fail(e)
    print(f"Successfully added: {book.title} by {book.author} (id {book.id})")

@app.command("edit")
def cli_edit(
    book_id: str,
    title: str = typer.Option(..., "--title", "-t"),
    author: str = typer.Option("", "--author", "-a"),
    isbn: str = typer.Option("", "--isbn"),
    category: str = typer.Option("", "--category", "-c"),
    publish_date: str = typer.Option("", "--publish-date"),
    summary: str = typer.Option("", "--summary"),
    cover_url: str = typer.Option("", "--cover-url"),
    status: Optional[str] = typer.Option(None, "--status", help="AVAILABLE or LOST"),
):
    """Overwrite a book's catalog fields (history is kept)."""
    fields = {
        "title": title, "author": author, "isbn": isbn, "category": category,
        "publish_date": publish_date, "summary": summary, "cover_url": cover_url, "status": status,
    }
    try:
        book = LibraryManager.get_instance().create_or_update(fields, existing_id=book_id)
    except LibraryError as e:
        _fail(e)
    print(f"Updated: {book.title} by {book.author}")

@app.command("remove")
def cli_remove(book_id: str):
    """Delete a book by id."""
    try:
        LibraryManager.get_instance().delete_book(book_id)
    except LibraryError as e:
        _fail(e)
    print(f"Book with id {book_id} has been removed.")

@app.command("borrow")
def cli_borrow(book_id: str, borrower: str):
    """Lend an available book."""
    try:
        book = LibraryManager.get_instance().borrow(book_id, borrower)
    except LibraryError as e:
        _fail(e)
    print(f"'{book.title}' lent to {book.borrower_name}, due {book.due_date}.")

@app.command("return")
def cli_return(book_id: str):
    """Take a borrowed book back."""
    try:
        book = LibraryManager.get_instance().return_book(book_id)
    except LibraryError as e:
        _fail(e)
    print(f"'{book.title}' returned.")

@app.command("reserve")
def cli_reserve(book_id: str, reader: str):
    """Reserve a borrowed book for a reader."""
    try:
        book = LibraryManager.get_instance().reserve(book_id, reader)
    except LibraryError as e:
        _fail(e)
    print(f"'{book.title}' reserved for {book.reserved_by}.")

@app.command("cancel-reservation")
def cli_cancel_reservation(book_id: str):
    """Drop the pending reservation of a book, if any."""
    lib = LibraryManager.get_instance()
    try:
        reader = lib.get_book(book_id).reserved_by
        book = lib.cancel_reservation(book_id)
    except LibraryError as e:
        _fail(e)
    if reader:
        print(f"Reservation by {reader} on '{book.title}' cancelled.")
    else:
        print(f"No pending reservation on '{book.title}'.")

@app.command("lost")
def cli_lost(book_id: str):
    """Mark a book as lost."""
    try:
        book = LibraryManager.get_instance().mark_lost(book_id)
    except LibraryError as e:
        _fail(e)
    print(f"'{book.title}' marked as lost.")

@app.command("found")
def cli_found(book_id: str):
    """Put a lost book back into circulation."""
    try:
        book = LibraryManager.get_instance().mark_found(book_id)
    except LibraryError as e:
        _fail(e)
    print(f"'{book.title}' is available again.")

@app.command("overdue")
def cli_overdue():
    """List overdue books with days late and severity."""
    lib = LibraryManager.get_instance()
    books, today = lib.list_books(), lib.today()
    rows = []
    for book in reports.overdue_books(books, today):
        days = reports.overdue_days(book, today)
        rows.append({
            "id": book.id,
            "title": book.title,
            "borrower": book.borrower_name,
            "due_date": book.due_date,
            "days": days,
            "severity": reports.severity_bucket(days),
        })
    print_overdue_result(rows)

@app.command("readers")
def cli_readers():
    """Show per-reader borrowing totals."""
    print_readers_result(reports.reader_stats(LibraryManager.get_instance().list_books()))

@app.command("stats")
def cli_stats():
    """Show library totals."""
    print_stats_result(LibraryManager.get_instance().get_statistics())

@app.command("history")
def cli_history():
    """Show borrow-history totals."""
    print_stats_result(reports.history_summary(LibraryManager.get_instance().list_books()))

@app.command("export")
def cli_export(output: Optional[Path] = typer.Option(None, "--output-file", "-f", help="Target JSON file")):
    """Export the whole collection as a JSON snapshot."""
    lib = LibraryManager.get_instance()
    target = output or Path(f"libgenius_books_{lib.today().isoformat()}.json")
    target.write_text(lib.export_snapshot(), encoding="utf-8")
    print(f"Exported {len(lib.list_books())} books to {target}")

@app.command("import")
def cli_import(
    source: Path,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask before replacing the collection"),
):
    """Replace the whole collection with a JSON snapshot."""
    if not source.exists():
        print(f"File not found: {source}")
        raise typer.Exit(code=1)
    if not yes and not typer.confirm("Importing replaces the current collection. Continue?"):
        print("Import cancelled.")
        return
    try:
        count = LibraryManager.get_instance().import_snapshot(source.read_bytes())
    except LibraryError as e:
        _fail(e)
    print(f"Imported {count} books.")

@app.command("suggest")
def cli_suggest(title: str):
    """Ask the AI assistant for catalog fields for a title."""
    suggestion = asyncio.run(BookMetadataService().suggest_book_metadata(title))
    if suggestion is None:
        print("No suggestion available.")
        return
    for key, value in suggestion.to_dict().items():
        print(f"{key}: {value}")

@app.command("serve")
def cli_serve(no_browser: bool = typer.Option(False, "--no-browser", help="Do not open a browser window")):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")
    if not no_browser:
        try:
            webbrowser.open(url)
        except webbrowser.Error as e:
            logger.warning(f"Could not open a browser: {e}")
    args = [sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)]
    if settings.debug:
        args.append("--reload")
    subprocess.run(args, env=dict(os.environ))


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.WARNING)
    app()
