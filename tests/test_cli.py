import json

import pytest
from typer.testing import CliRunner

import main
from ai_service import BookMetadataService, BookSuggestion
from main import LibraryManager, app
from transfer import export_snapshot

runner = CliRunner()


@pytest.fixture
def cli_lib(lib, monkeypatch):
    monkeypatch.setattr(LibraryManager, "get_instance", classmethod(lambda cls: lib))
    monkeypatch.setenv("LIB_CLI_OUTPUT", "plain")
    return lib


def _add(lib, title="三体", author="刘慈欣"):
    return lib.create_or_update({"title": title, "author": author, "category": "科幻"})


def test_list_no_books(cli_lib):
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_book(cli_lib):
    result = runner.invoke(app, ["add", "Clean Code", "--author", "Robert C. Martin", "--category", "技术"])

    assert result.exit_code == 0
    assert "Successfully added: Clean Code by Robert C. Martin" in result.stdout
    [book] = cli_lib.list_books()
    assert book.category == "技术"


def test_add_with_blank_title_fails(cli_lib):
    result = runner.invoke(app, ["add", "   "])
    assert result.exit_code == 1
    assert "Error: create: title must not be empty" in result.stdout


def test_add_with_suggestion_fills_empty_fields(cli_lib, monkeypatch):
    async def fake_suggest(self, title):
        return BookSuggestion(author="刘慈欣", category="科幻", summary="地球文明与三体文明的接触。")

    monkeypatch.setattr(BookMetadataService, "suggest_book_metadata", fake_suggest)

    result = runner.invoke(app, ["add", "三体", "--category", "文学", "--suggest"])

    assert result.exit_code == 0
    [book] = cli_lib.list_books()
    assert book.author == "刘慈欣"
    assert book.category == "文学"
    assert book.summary == "地球文明与三体文明的接触。"


def test_list_and_find(cli_lib):
    book = _add(cli_lib)

    listed = runner.invoke(app, ["list"])
    assert f"{book.id} - 三体 by 刘慈欣 [AVAILABLE]" in listed.stdout

    found = runner.invoke(app, ["find", book.id])
    assert found.exit_code == 0
    assert "Title: 三体" in found.stdout

    missing = runner.invoke(app, ["find", "nope"])
    assert missing.exit_code == 1
    assert "Book with id nope not found." in missing.stdout


def test_list_json_output(cli_lib):
    book = _add(cli_lib)
    result = runner.invoke(app, ["--output", "json", "list"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)[0]["id"] == book.id


def test_search(cli_lib):
    _add(cli_lib)
    _add(cli_lib, "Clean Code", "Robert C. Martin")

    result = runner.invoke(app, ["search", "martin"])
    assert "Clean Code" in result.stdout
    assert "三体" not in result.stdout

    nothing = runner.invoke(app, ["search", "tolkien"])
    assert "No matching books." in nothing.stdout


def test_edit_and_remove(cli_lib):
    book = _add(cli_lib)

    edited = runner.invoke(app, ["edit", book.id, "--title", "The Three-Body Problem", "--author", "Liu Cixin"])
    assert edited.exit_code == 0
    assert "Updated: The Three-Body Problem by Liu Cixin" in edited.stdout

    removed = runner.invoke(app, ["remove", book.id])
    assert removed.exit_code == 0
    assert f"Book with id {book.id} has been removed." in removed.stdout
    assert cli_lib.list_books() == []

    again = runner.invoke(app, ["remove", book.id])
    assert again.exit_code == 1
    assert "Error: delete:" in again.stdout


def test_borrow_reserve_return(cli_lib):
    book = _add(cli_lib)

    lent = runner.invoke(app, ["borrow", book.id, "Alice"])
    assert lent.exit_code == 0
    assert "'三体' lent to Alice, due 2024-03-31." in lent.stdout

    twice = runner.invoke(app, ["borrow", book.id, "Carol"])
    assert twice.exit_code == 1
    assert "Error: borrow:" in twice.stdout

    reserved = runner.invoke(app, ["reserve", book.id, "Bob"])
    assert "'三体' reserved for Bob." in reserved.stdout

    returned = runner.invoke(app, ["return", book.id])
    assert returned.exit_code == 0
    assert "'三体' returned." in returned.stdout
    assert cli_lib.get_book(book.id).reserved_by is None


def test_cancel_reservation(cli_lib):
    book = _add(cli_lib)
    cli_lib.borrow(book.id, "Alice")
    cli_lib.reserve(book.id, "Bob")

    result = runner.invoke(app, ["cancel-reservation", book.id])

    assert result.exit_code == 0
    assert "Reservation by Bob on '三体' cancelled." in result.stdout
    assert cli_lib.get_book(book.id).reserved_by is None


def test_cancel_reservation_when_none_is_pending(cli_lib):
    book = _add(cli_lib)
    cli_lib.borrow(book.id, "Alice")

    result = runner.invoke(app, ["cancel-reservation", book.id])

    assert result.exit_code == 0
    assert "No pending reservation on '三体'." in result.stdout
    assert "cancelled" not in result.stdout


def test_cancel_reservation_unknown_book(cli_lib):
    result = runner.invoke(app, ["cancel-reservation", "nope"])
    assert result.exit_code == 1
    assert "Error: get:" in result.stdout


def test_lost_and_found(cli_lib):
    book = _add(cli_lib)
    assert "'三体' marked as lost." in runner.invoke(app, ["lost", book.id]).stdout
    assert runner.invoke(app, ["borrow", book.id, "Alice"]).exit_code == 1
    assert "'三体' is available again." in runner.invoke(app, ["found", book.id]).stdout


def test_reports(cli_lib, clock, sample_books):
    cli_lib.import_snapshot(export_snapshot(sample_books))
    clock.current = clock.current.replace(year=2024, month=12, day=20)

    overdue = runner.invoke(app, ["overdue"])
    assert "百年孤独 (张三) due 2024-12-15, 5 day(s) overdue [<=7]" in overdue.stdout

    readers = runner.invoke(app, ["readers"])
    assert readers.stdout.splitlines()[0] == "李四: 3 borrowed, 0 current"

    stats = runner.invoke(app, ["stats"])
    assert "Total Books: 5" in stats.stdout
    assert "Overdue Books: 1" in stats.stdout

    history = runner.invoke(app, ["history"])
    assert "Average Duration Days: 14" in history.stdout


def test_reports_on_empty_library(cli_lib):
    assert "No overdue books." in runner.invoke(app, ["overdue"]).stdout
    assert "No readers yet." in runner.invoke(app, ["readers"]).stdout


def test_export_and_import(cli_lib, sample_books, tmp_path):
    source = tmp_path / "books.json"
    source.write_text(export_snapshot(sample_books), encoding="utf-8")

    imported = runner.invoke(app, ["import", str(source), "--yes"])
    assert imported.exit_code == 0
    assert "Imported 5 books." in imported.stdout

    target = tmp_path / "out.json"
    exported = runner.invoke(app, ["export", "--output-file", str(target)])
    assert exported.exit_code == 0
    assert f"Exported 5 books to {target}" in exported.stdout
    assert json.loads(target.read_text(encoding="utf-8")) == json.loads(source.read_text(encoding="utf-8"))


def test_import_can_be_cancelled(cli_lib, sample_books, tmp_path):
    source = tmp_path / "books.json"
    source.write_text(export_snapshot(sample_books), encoding="utf-8")

    result = runner.invoke(app, ["import", str(source)], input="n\n")

    assert "Import cancelled." in result.stdout
    assert cli_lib.list_books() == []


def test_import_of_broken_file(cli_lib, tmp_path):
    _add(cli_lib)
    source = tmp_path / "broken.json"
    source.write_text("{\"not\": \"a list\"}", encoding="utf-8")

    result = runner.invoke(app, ["import", str(source), "-y"])

    assert result.exit_code == 1
    assert "Error: import:" in result.stdout
    assert len(cli_lib.list_books()) == 1


def test_import_missing_file(cli_lib, tmp_path):
    result = runner.invoke(app, ["import", str(tmp_path / "nope.json"), "-y"])
    assert result.exit_code == 1
    assert "File not found" in result.stdout


def test_suggest_without_assistant(cli_lib, monkeypatch):
    monkeypatch.setattr(main.settings, "enable_ai_features", False)
    result = runner.invoke(app, ["suggest", "三体"])
    assert result.exit_code == 0
    assert "No suggestion available." in result.stdout


def test_library_manager_reuses_instance_per_database(tmp_path, monkeypatch):
    LibraryManager.reset()
    monkeypatch.setattr(main.settings, "database_file", str(tmp_path / "one.db"))
    try:
        first = LibraryManager.get_instance()
        assert LibraryManager.get_instance() is first

        monkeypatch.setattr(main.settings, "database_file", str(tmp_path / "two.db"))
        assert LibraryManager.get_instance() is not first
    finally:
        LibraryManager.reset()
