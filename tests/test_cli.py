import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from main import app
from utils.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)


def invoke(db_file, *args):
    return runner.invoke(app, ["--db", db_file, *args])


def test_books_empty(db_file):
    result = invoke(db_file, "books")
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_register_and_list_members(db_file):
    result = invoke(db_file, "register", "Ada Lovelace", "ada@example.org", "--type", "faculty")
    assert result.exit_code == 0
    assert "Registered LIB-" in result.stdout
    assert "(faculty)" in result.stdout

    listing = invoke(db_file, "members")
    assert "Ada Lovelace" in listing.stdout


def test_duplicate_registration_exits_with_error(db_file):
    invoke(db_file, "register", "Ada Lovelace", "ada@example.org")
    result = invoke(db_file, "register", "Ada Again", "ada@example.org")
    assert result.exit_code == 1
    assert "Error: A member with this email already exists." in result.stdout


def test_borrow_and_return(db_file, lib, student):
    assert invoke(db_file, "add-book", "Dune", "ACC-0001", "--author", "Frank Herbert").exit_code == 0

    borrowed = invoke(db_file, "borrow", student.member_id, "ACC-0001")
    assert borrowed.exit_code == 0
    assert f"Borrowed ACC-0001 to {student.member_id}" in borrowed.stdout

    loans = invoke(db_file, "loans")
    assert loans.exit_code == 0
    assert "No loans." not in loans.stdout

    returned = invoke(db_file, "return", "ACC-0001")
    assert returned.exit_code == 0
    assert "Returned ACC-0001 (0 days overdue)" in returned.stdout

    again = invoke(db_file, "return", "ACC-0001")
    assert again.exit_code == 1
    assert "not checked out" in again.stdout


def test_pay_fine(db_file, lib, student):
    fine = lib.fines.create_overdue_fine(student.id, None, 2, student.fine_rate_per_day)

    listing = invoke(db_file, "fines", "--unpaid")
    assert "Total unpaid: 10" in listing.stdout

    result = invoke(db_file, "pay-fine", str(fine.id))
    assert result.exit_code == 0
    assert f"Fine {fine.id} paid" in result.stdout
    assert invoke(db_file, "waive-fine", str(fine.id)).exit_code == 1


def test_reservations(db_file, lib, student, book_with_copy):
    book, _ = book_with_copy
    result = invoke(db_file, "reserve", student.member_id, str(book.id))
    assert result.exit_code == 0
    assert "Reservation 1 placed" in result.stdout

    assert invoke(db_file, "cancel-reservation", "1").exit_code == 0
    assert "No reservations." in invoke(db_file, "reservations").stdout


def test_json_output(db_file, book_with_copy):
    result = invoke(db_file, "--output", "json", "books")
    assert result.exit_code == 0
    books = json.loads(result.stdout)
    assert books[0]["isbn"] == "0262510871"


def test_stats(db_file, book_with_copy):
    result = invoke(db_file, "stats")
    assert result.exit_code == 0
    assert "Total Copies: 1" in result.stdout
    assert "Available Copies: 1" in result.stdout


@patch('subprocess.run')
@patch('webbrowser.open')
def test_serve_command(mock_webbrowser_open, mock_subprocess_run, db_file):
    result = invoke(db_file, "serve")
    assert result.exit_code == 0
    assert "Starting web UI on" in result.stdout
    mock_webbrowser_open.assert_called_once()
    args = mock_subprocess_run.call_args[0][0]
    assert "api:app" in args
