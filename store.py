"""SQLite implementation of the entity store used by the circulation services.

Every method opens its own connection, runs its statement and commits, unless
it is called inside ``EntityStore.atomic()``: then all calls made on the same
thread share one connection and one ``BEGIN IMMEDIATE`` transaction, which is
committed when the block exits and rolled back if it raises.

Status-changing writes can be made conditional on the previous state. A
conditional write that matches no row raises ``ConflictError`` so a lost race
is detected instead of silently overwritten.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Iterator, List, Optional, Sequence, Tuple

from database import get_db_connection, initialize_database
from entities import (
    Book,
    BookCopy,
    BorrowingTransaction,
    CopyStatus,
    Fine,
    FineState,
    Member,
    MemberStatus,
    Reservation,
    ReservationStatus,
)
from errors import ConflictError, NotFoundError, StoreFailure

logger = logging.getLogger(__name__)


def _translate(exc: sqlite3.Error) -> Exception:
    if isinstance(exc, sqlite3.IntegrityError):
        return ConflictError(f"Constraint violated: {exc}")
    return StoreFailure(f"Database operation failed: {exc}")


def _like(text: str) -> str:
    return f"%{text.strip()}%"


class EntityStore:
    """Persistence gateway for members, titles, copies, loans, fines and reservations."""

    def __init__(self, db_file: str) -> None:
        self.db_file = db_file
        self._local = threading.local()
        try:
            initialize_database(db_file)
        except sqlite3.Error as exc:
            raise StoreFailure(f"Could not initialize database {db_file}: {exc}") from exc

    # ------------------------- Connections ------------------------- #
    def _open(self) -> sqlite3.Connection:
        try:
            return get_db_connection(self.db_file)
        except sqlite3.Error as exc:
            raise StoreFailure(f"Could not open database {self.db_file}: {exc}") from exc

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        shared = getattr(self._local, "conn", None)
        if shared is not None:
            try:
                yield shared
            except sqlite3.Error as exc:
                raise _translate(exc) from exc
            return

        conn = self._open()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise _translate(exc) from exc
        finally:
            conn.close()

    @contextmanager
    def atomic(self) -> Iterator["EntityStore"]:
        """Run the enclosed store calls as one transaction; nested blocks join the outer one."""
        if getattr(self._local, "conn", None) is not None:
            yield self
            return

        conn = self._open()
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._local.conn = conn
            yield self
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise _translate(exc) from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            conn.close()

    def _query(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        with self._connection() as conn:
            return conn.execute(sql, params).fetchall()

    def _query_one(self, sql: str, params: Sequence = ()) -> Optional[sqlite3.Row]:
        with self._connection() as conn:
            return conn.execute(sql, params).fetchone()

    def _write(self, sql: str, params: Sequence = ()) -> Tuple[int, int]:
        """Execute a write and return ``(rowcount, lastrowid)``."""
        with self._connection() as conn:
            cursor = conn.execute(sql, params)
            return cursor.rowcount, cursor.lastrowid

    def ping(self) -> bool:
        self._query_one("SELECT 1")
        return True

    # ------------------------- Members ------------------------- #
    def find_member(self, member_id: str) -> Optional[Member]:
        """Resolve a member by the human-facing member id (e.g. LIB-2024-00001)."""
        row = self._query_one("SELECT * FROM members WHERE member_id = ?", (member_id,))
        return Member.from_row(row) if row else None

    def get_member(self, pk: int) -> Optional[Member]:
        row = self._query_one("SELECT * FROM members WHERE id = ?", (pk,))
        return Member.from_row(row) if row else None

    def find_member_by_email(self, email: str) -> Optional[Member]:
        row = self._query_one("SELECT * FROM members WHERE lower(email) = lower(?)", (email,))
        return Member.from_row(row) if row else None

    def count_members(self, status: Optional[MemberStatus] = None) -> int:
        if status is None:
            row = self._query_one("SELECT COUNT(*) FROM members")
        else:
            row = self._query_one("SELECT COUNT(*) FROM members WHERE status = ?", (status.value,))
        return row[0]

    def list_members(self) -> List[Member]:
        rows = self._query("SELECT * FROM members ORDER BY full_name")
        return [Member.from_row(r) for r in rows]

    def search_members(self, text: str) -> List[Member]:
        term = _like(text)
        rows = self._query(
            "SELECT * FROM members WHERE full_name LIKE ? OR email LIKE ? OR member_id LIKE ? ORDER BY full_name",
            (term, term, term),
        )
        return [Member.from_row(r) for r in rows]

    def insert_member(self, member: Member) -> Member:
        _, pk = self._write(
            """
            INSERT INTO members (
                member_id, full_name, email, phone, address, member_type, status,
                registration_date, expiration_date, max_books_allowed,
                borrowing_period_days, renewal_limit, fine_rate_per_day
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                member.member_id,
                member.full_name,
                member.email,
                member.phone,
                member.address,
                member.member_type.value,
                member.status.value,
                member.registration_date.isoformat(),
                member.expiration_date.isoformat() if member.expiration_date else None,
                member.max_books_allowed,
                member.borrowing_period_days,
                member.renewal_limit,
                str(member.fine_rate_per_day),
            ),
        )
        return self.get_member(pk)

    def update_member_status(self, pk: int, status: MemberStatus) -> Member:
        count, _ = self._write("UPDATE members SET status = ? WHERE id = ?", (status.value, pk))
        if count == 0:
            raise NotFoundError(f"Member {pk} not found.")
        return self.get_member(pk)

    def count_open_borrowings(self, member_pk: int) -> int:
        row = self._query_one(
            "SELECT COUNT(*) FROM borrowing_transactions WHERE member_id = ? AND return_date IS NULL",
            (member_pk,),
        )
        return row[0]

    # ------------------------- Titles and copies ------------------------- #
    def insert_book(self, title: str, author: Optional[str], isbn: Optional[str],
                    publication_year: Optional[int]) -> Book:
        _, pk = self._write(
            "INSERT INTO books (title, author, isbn, publication_year) VALUES (?, ?, ?, ?)",
            (title, author, isbn, publication_year),
        )
        return self.get_book(pk)

    def get_book(self, pk: int) -> Optional[Book]:
        row = self._query_one("SELECT * FROM books WHERE id = ?", (pk,))
        return Book.from_row(row) if row else None

    def list_books(self) -> List[Book]:
        rows = self._query("SELECT * FROM books ORDER BY title")
        return [Book.from_row(r) for r in rows]

    def search_books(self, text: str) -> List[Book]:
        term = _like(text)
        rows = self._query(
            "SELECT * FROM books WHERE title LIKE ? OR author LIKE ? OR isbn LIKE ? ORDER BY title",
            (term, term, term),
        )
        return [Book.from_row(r) for r in rows]

    def insert_copy(self, book_id: int, accession_number: str, location: Optional[str],
                    acquired_date: date) -> BookCopy:
        _, pk = self._write(
            "INSERT INTO book_copies (book_id, accession_number, location, status, acquired_date) VALUES (?, ?, ?, ?, ?)",
            (book_id, accession_number, location, CopyStatus.AVAILABLE.value, acquired_date.isoformat()),
        )
        return self.get_book_copy(pk)

    def get_book_copy(self, pk: int) -> Optional[BookCopy]:
        row = self._query_one("SELECT * FROM book_copies WHERE id = ?", (pk,))
        return BookCopy.from_row(row) if row else None

    def find_book_copy_by_accession(self, accession_number: str) -> Optional[BookCopy]:
        row = self._query_one("SELECT * FROM book_copies WHERE accession_number = ?", (accession_number,))
        return BookCopy.from_row(row) if row else None

    def list_copies(self, book_id: int) -> List[BookCopy]:
        rows = self._query("SELECT * FROM book_copies WHERE book_id = ? ORDER BY accession_number", (book_id,))
        return [BookCopy.from_row(r) for r in rows]

    def count_copies(self, status: Optional[CopyStatus] = None) -> int:
        if status is None:
            row = self._query_one("SELECT COUNT(*) FROM book_copies")
        else:
            row = self._query_one("SELECT COUNT(*) FROM book_copies WHERE status = ?", (status.value,))
        return row[0]

    def update_copy_status(self, copy_pk: int, status: CopyStatus,
                           expected: Optional[CopyStatus] = None) -> BookCopy:
        """Set a copy's status; with ``expected`` the write only applies if the copy is still in that state."""
        if expected is None:
            count, _ = self._write("UPDATE book_copies SET status = ? WHERE id = ?", (status.value, copy_pk))
        else:
            count, _ = self._write(
                "UPDATE book_copies SET status = ? WHERE id = ? AND status = ?",
                (status.value, copy_pk, expected.value),
            )
        if count == 0:
            if self.get_book_copy(copy_pk) is None:
                raise NotFoundError(f"Book copy {copy_pk} not found.")
            logger.warning(f"Copy {copy_pk} was not {expected.value}; status update to {status.value} refused")
            raise ConflictError(f"Book copy {copy_pk} is no longer {expected.value}.")
        return self.get_book_copy(copy_pk)

    # ------------------------- Borrowing transactions ------------------------- #
    def get_borrowing(self, pk: int) -> Optional[BorrowingTransaction]:
        row = self._query_one("SELECT * FROM borrowing_transactions WHERE id = ?", (pk,))
        return BorrowingTransaction.from_row(row) if row else None

    def find_open_borrowing_by_copy(self, copy_pk: int) -> Optional[BorrowingTransaction]:
        row = self._query_one(
            "SELECT * FROM borrowing_transactions WHERE book_copy_id = ? AND return_date IS NULL",
            (copy_pk,),
        )
        return BorrowingTransaction.from_row(row) if row else None

    def insert_borrowing(self, member_pk: int, copy_pk: int, borrowed_date: date,
                         due_date: date) -> BorrowingTransaction:
        _, pk = self._write(
            "INSERT INTO borrowing_transactions (member_id, book_copy_id, borrowed_date, due_date) VALUES (?, ?, ?, ?)",
            (member_pk, copy_pk, borrowed_date.isoformat(), due_date.isoformat()),
        )
        return self.get_borrowing(pk)

    def close_borrowing(self, transaction_id: int, return_date: date) -> BorrowingTransaction:
        """Record the return date on an open loan; a loan that is already closed is a conflict."""
        count, _ = self._write(
            "UPDATE borrowing_transactions SET return_date = ? WHERE id = ? AND return_date IS NULL",
            (return_date.isoformat(), transaction_id),
        )
        if count == 0:
            if self.get_borrowing(transaction_id) is None:
                raise NotFoundError(f"Borrowing transaction {transaction_id} not found.")
            raise ConflictError(f"Borrowing transaction {transaction_id} is already closed.")
        return self.get_borrowing(transaction_id)

    def list_borrowings(self, *, open_only: bool = False, member_pk: Optional[int] = None,
                        due_before: Optional[date] = None) -> List[BorrowingTransaction]:
        clauses = []
        params: list = []
        if open_only:
            clauses.append("return_date IS NULL")
        if member_pk is not None:
            clauses.append("member_id = ?")
            params.append(member_pk)
        if due_before is not None:
            clauses.append("due_date < ?")
            params.append(due_before.isoformat())
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._query(f"SELECT * FROM borrowing_transactions{where} ORDER BY due_date, id", params)
        return [BorrowingTransaction.from_row(r) for r in rows]

    # ------------------------- Fines ------------------------- #
    def get_fine(self, pk: int) -> Optional[Fine]:
        row = self._query_one("SELECT * FROM fines WHERE id = ?", (pk,))
        return Fine.from_row(row) if row else None

    def insert_fine(self, member_pk: int, transaction_id: Optional[int], amount: Decimal,
                    reason: str, created: date) -> Fine:
        _, pk = self._write(
            "INSERT INTO fines (member_id, transaction_id, amount, reason, state, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (member_pk, transaction_id, str(amount), reason, FineState.UNPAID.value, created.isoformat()),
        )
        return self.get_fine(pk)

    def _settle_fine(self, fine_id: int, sql: str, params: Sequence) -> Fine:
        count, _ = self._write(sql, params)
        if count == 0:
            if self.get_fine(fine_id) is None:
                raise NotFoundError(f"Fine {fine_id} not found.")
            raise ConflictError(f"Fine {fine_id} is already settled.")
        return self.get_fine(fine_id)

    def mark_fine_paid(self, fine_id: int, payment_date: date) -> Fine:
        return self._settle_fine(
            fine_id,
            "UPDATE fines SET state = ?, payment_date = ? WHERE id = ? AND state = ?",
            (FineState.PAID.value, payment_date.isoformat(), fine_id, FineState.UNPAID.value),
        )

    def mark_fine_waived(self, fine_id: int, reason: str) -> Fine:
        return self._settle_fine(
            fine_id,
            "UPDATE fines SET state = ?, waiver_reason = ? WHERE id = ? AND state = ?",
            (FineState.WAIVED.value, reason, fine_id, FineState.UNPAID.value),
        )

    def list_fines(self, *, member_pk: Optional[int] = None,
                   state: Optional[FineState] = None) -> List[Fine]:
        clauses = []
        params: list = []
        if member_pk is not None:
            clauses.append("member_id = ?")
            params.append(member_pk)
        if state is not None:
            clauses.append("state = ?")
            params.append(state.value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._query(f"SELECT * FROM fines{where} ORDER BY created_at DESC, id DESC", params)
        return [Fine.from_row(r) for r in rows]

    # ------------------------- Reservations ------------------------- #
    def get_reservation(self, pk: int) -> Optional[Reservation]:
        row = self._query_one("SELECT * FROM reservations WHERE id = ?", (pk,))
        return Reservation.from_row(row) if row else None

    def insert_reservation(self, member_pk: int, book_id: int, reservation_date: date,
                           expiration_date: date) -> Reservation:
        _, pk = self._write(
            "INSERT INTO reservations (member_id, book_id, reservation_date, expiration_date, status) VALUES (?, ?, ?, ?, ?)",
            (member_pk, book_id, reservation_date.isoformat(), expiration_date.isoformat(),
             ReservationStatus.ACTIVE.value),
        )
        return self.get_reservation(pk)

    def list_reservations(self, *, member_pk: Optional[int] = None, book_id: Optional[int] = None,
                          status: Optional[ReservationStatus] = None) -> List[Reservation]:
        clauses = []
        params: list = []
        if member_pk is not None:
            clauses.append("member_id = ?")
            params.append(member_pk)
        if book_id is not None:
            clauses.append("book_id = ?")
            params.append(book_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._query(f"SELECT * FROM reservations{where} ORDER BY reservation_date, id", params)
        return [Reservation.from_row(r) for r in rows]

    def update_reservation_status(self, pk: int, status: ReservationStatus,
                                  expected: ReservationStatus = ReservationStatus.ACTIVE) -> Reservation:
        count, _ = self._write(
            "UPDATE reservations SET status = ? WHERE id = ? AND status = ?",
            (status.value, pk, expected.value),
        )
        if count == 0:
            if self.get_reservation(pk) is None:
                raise NotFoundError(f"Reservation {pk} not found.")
            raise ConflictError(f"Reservation {pk} is no longer {expected.value}.")
        return self.get_reservation(pk)
