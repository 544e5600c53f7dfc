import sqlite3
from datetime import date
from decimal import Decimal

import pytest

from entities import CopyStatus
from errors import ConflictError, NotFoundError, StoreFailure
from store import EntityStore


def test_atomic_block_rolls_back_on_error(lib):
    with pytest.raises(RuntimeError):
        with lib.store.atomic():
            lib.store.insert_book("Half Written", None, None, None)
            raise RuntimeError("boom")
    assert lib.store.list_books() == []


def test_nested_atomic_joins_outer_transaction(lib):
    with pytest.raises(RuntimeError):
        with lib.store.atomic():
            with lib.store.atomic():
                lib.store.insert_book("Inner", None, None, None)
            raise RuntimeError("outer fails after inner finished")
    assert lib.store.list_books() == []


def test_atomic_block_commits(lib):
    with lib.store.atomic():
        book = lib.store.insert_book("Kept", None, None, None)
        lib.store.insert_copy(book.id, "ACC-1", None, date(2024, 1, 1))
    assert [b.title for b in lib.store.list_books()] == ["Kept"]
    assert lib.store.count_copies() == 1


def test_conditional_copy_update(lib, book_with_copy):
    _, copy = book_with_copy
    updated = lib.store.update_copy_status(copy.id, CopyStatus.BORROWED, expected=CopyStatus.AVAILABLE)
    assert updated.status == CopyStatus.BORROWED

    with pytest.raises(ConflictError):
        lib.store.update_copy_status(copy.id, CopyStatus.BORROWED, expected=CopyStatus.AVAILABLE)
    with pytest.raises(NotFoundError):
        lib.store.update_copy_status(999, CopyStatus.LOST)


def test_only_one_open_loan_per_copy(lib, student, book_with_copy):
    _, copy = book_with_copy
    lib.store.insert_borrowing(student.id, copy.id, date(2024, 1, 1), date(2024, 1, 15))

    with pytest.raises(ConflictError):
        lib.store.insert_borrowing(student.id, copy.id, date(2024, 1, 2), date(2024, 1, 16))


def test_closed_loan_cannot_be_closed_again(lib, student, book_with_copy):
    _, copy = book_with_copy
    loan = lib.store.insert_borrowing(student.id, copy.id, date(2024, 1, 1), date(2024, 1, 15))
    lib.store.close_borrowing(loan.id, date(2024, 1, 10))

    with pytest.raises(ConflictError):
        lib.store.close_borrowing(loan.id, date(2024, 1, 11))
    assert lib.store.get_borrowing(loan.id).return_date == date(2024, 1, 10)


def test_fine_amount_round_trips_as_decimal(lib, student):
    fine = lib.store.insert_fine(student.id, None, Decimal("12.50"), "Damaged cover", date(2024, 1, 1))
    assert lib.store.get_fine(fine.id).amount == Decimal("12.50")

    lib.store.mark_fine_paid(fine.id, date(2024, 1, 2))
    with pytest.raises(ConflictError):
        lib.store.mark_fine_waived(fine.id, "too late")


def test_sqlite_errors_become_store_failures(lib, monkeypatch):
    def broken_connection(db_file):
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr("store.get_db_connection", broken_connection)
    with pytest.raises(StoreFailure):
        lib.store.ping()


def test_unusable_database_path(tmp_path):
    with pytest.raises(StoreFailure):
        EntityStore(str(tmp_path / "missing-dir" / "library.db"))
