import os
import json
from typing import List, Any, Dict, Sequence
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def _book_status_text(book: Any) -> str:
    text = book.status.value
    if book.borrower_name:
        text += f" ({book.borrower_name}, due {book.due_date})"
    if book.reserved_by:
        text += f" [reserved by {book.reserved_by}]"
    return text

def print_list_result(books: Sequence[Any], empty_message: str = "No books in library.") -> None:
    """Print books in the current output mode.
    - plain: 'id - Title by Author [STATUS]' lines
    - json: the exported record of each book
    - rich: a Rich table
    """
    mode = get_output_mode()

    if not books:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Category", style="white")
        table.add_column("Status", style="green")
        for b in books:
            table.add_row(b.id, b.title, b.author, b.category, _book_status_text(b))
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{_book_status_text(b)}]")

def print_book_detail(book: Any) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(book.to_dict(), ensure_ascii=False))
        return
    lines = [
        f"ID: {book.id}",
        f"Title: {book.title}",
        f"Author: {book.author}",
        f"ISBN: {book.isbn}",
        f"Category: {book.category}",
        f"Status: {_book_status_text(book)}",
        f"History: {len(book.borrow_history)} loan(s)",
    ]
    if mode == "rich":
        _console.print(Panel.fit("\n".join(lines), title="📖 Book", border_style="blue"))
    else:
        print("\n".join(lines))

def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print library totals.
    - plain: one 'Label: value' line per metric
    - json: JSON object
    - rich: Panel with the metrics
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
        return
    labels = {key: key.replace("_", " ").title() for key in stats}
    if mode == "rich":
        content = "\n".join(f"[bold]{labels[key]}:[/] {value}" for key, value in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{labels[key]}: {value}")

def print_readers_result(readers: List[Any]) -> None:
    mode = get_output_mode()
    if not readers:
        print("No readers yet.")
        return
    if mode == "json":
        print(json.dumps([r.to_dict() for r in readers], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="👥 Readers", header_style="bold cyan")
        table.add_column("Name")
        table.add_column("Borrowed", justify="right")
        table.add_column("Current", justify="right")
        for r in readers:
            table.add_row(r.name, str(r.borrow_count), str(r.current_borrowed))
        _console.print(table)
    else:
        for r in readers:
            print(f"{r.name}: {r.borrow_count} borrowed, {r.current_borrowed} current")

def print_overdue_result(rows: List[Dict[str, Any]]) -> None:
    """rows: dicts with id, title, borrower, due_date, days, severity."""
    mode = get_output_mode()
    if not rows:
        print("No overdue books.")
        return
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="⏰ Overdue", header_style="bold red")
        for column in ("ID", "Title", "Borrower", "Due", "Days", "Severity"):
            table.add_column(column)
        for row in rows:
            table.add_row(row["id"], row["title"], row["borrower"], row["due_date"], str(row["days"]), row["severity"])
        _console.print(table)
    else:
        for row in rows:
            print(f"{row['id']} - {row['title']} ({row['borrower']}) due {row['due_date']}, "
                  f"{row['days']} day(s) overdue [{row['severity']}]")
