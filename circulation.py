"""Circulation workflow: borrowing lookups, check-out and check-in.

The lookups are read-only and fail softly (``None``) so a circulation desk can
show "not found" without handling errors. The two transitions write several
records; each one runs inside a single store transaction and re-checks the
state it depends on, so a concurrent desk that got there first causes a
``ConflictError`` / ``InvalidStateError`` instead of a half-applied change.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Union

from entities import (
    BorrowingTransaction,
    CopyStatus,
    Fine,
    MemberStatus,
    Record,
)
from errors import InvalidStateError, LibraryError, NotFoundError
from fines import overdue_fine_terms
from store import EntityStore

logger = logging.getLogger(__name__)


def compute_due_date(borrowed_date: date, borrowing_period_days: int) -> date:
    return borrowed_date + timedelta(days=borrowing_period_days)


def compute_days_overdue(due_date: Union[date, datetime], today: Union[date, datetime]) -> int:
    """Whole calendar days past the due date, never negative. Time of day is ignored."""
    if isinstance(due_date, datetime):
        due_date = due_date.date()
    if isinstance(today, datetime):
        today = today.date()
    return max(0, (today - due_date).days)


@dataclass
class MemberBorrowingInfo(Record):
    id: int
    member_id: str
    full_name: str
    email: str
    status: MemberStatus
    max_books_allowed: int
    borrowing_period_days: int
    fine_rate_per_day: Decimal
    current_borrowings: int

    @property
    def remaining_allowance(self) -> int:
        return max(0, self.max_books_allowed - self.current_borrowings)


@dataclass
class BookCopyBorrowingInfo(Record):
    id: int
    accession_number: str
    status: CopyStatus
    location: Optional[str]
    book_id: int
    title: str
    isbn: Optional[str]


@dataclass
class BorrowingReturnInfo(Record):
    id: int
    borrowed_date: date
    due_date: date
    member_pk: int
    member_id: str
    full_name: str
    fine_rate_per_day: Decimal
    book_copy_id: int
    accession_number: str
    title: str


@dataclass
class ReturnResult(Record):
    transaction: BorrowingTransaction
    days_overdue: int
    fine: Optional[Fine] = None
    fine_error: Optional[str] = None


def check_borrowing_eligibility(member: MemberBorrowingInfo, copy: BookCopyBorrowingInfo) -> None:
    """Raise ``InvalidStateError`` unless ``member`` may borrow ``copy`` right now."""
    if member.status != MemberStatus.ACTIVE:
        raise InvalidStateError(f"Member {member.member_id} is {member.status.value}; only active members may borrow.")
    if member.current_borrowings >= member.max_books_allowed:
        raise InvalidStateError(
            f"Member {member.member_id} has reached the borrowing limit of {member.max_books_allowed} books."
        )
    if copy.status != CopyStatus.AVAILABLE:
        raise InvalidStateError(f"Copy {copy.accession_number} is {copy.status.value}, not available.")


class CirculationService:
    def __init__(self, store: EntityStore) -> None:
        self.store = store

    # ------------------------- Lookups ------------------------- #
    def lookup_member_for_borrowing(self, member_id: Optional[str]) -> Optional[MemberBorrowingInfo]:
        if not member_id or not member_id.strip():
            return None
        member = self.store.find_member(member_id.strip())
        if member is None:
            return None
        return MemberBorrowingInfo(
            id=member.id,
            member_id=member.member_id,
            full_name=member.full_name,
            email=member.email,
            status=member.status,
            max_books_allowed=member.max_books_allowed,
            borrowing_period_days=member.borrowing_period_days,
            fine_rate_per_day=member.fine_rate_per_day,
            current_borrowings=self.store.count_open_borrowings(member.id),
        )

    def lookup_book_copy_for_borrowing(self, accession_number: Optional[str]) -> Optional[BookCopyBorrowingInfo]:
        if not accession_number or not accession_number.strip():
            return None
        copy = self.store.find_book_copy_by_accession(accession_number.strip())
        if copy is None:
            return None
        book = self.store.get_book(copy.book_id)
        return BookCopyBorrowingInfo(
            id=copy.id,
            accession_number=copy.accession_number,
            status=copy.status,
            location=copy.location,
            book_id=copy.book_id,
            title=book.title if book else "",
            isbn=book.isbn if book else None,
        )

    def lookup_borrowing_for_return(self, accession_number: Optional[str]) -> Optional[BorrowingReturnInfo]:
        if not accession_number or not accession_number.strip():
            return None
        copy = self.store.find_book_copy_by_accession(accession_number.strip())
        if copy is None:
            return None
        loan = self.store.find_open_borrowing_by_copy(copy.id)
        if loan is None:
            return None
        member = self.store.get_member(loan.member_id)
        book = self.store.get_book(copy.book_id)
        return BorrowingReturnInfo(
            id=loan.id,
            borrowed_date=loan.borrowed_date,
            due_date=loan.due_date,
            member_pk=loan.member_id,
            member_id=member.member_id if member else "",
            full_name=member.full_name if member else "",
            fine_rate_per_day=member.fine_rate_per_day if member else Decimal("0"),
            book_copy_id=copy.id,
            accession_number=copy.accession_number,
            title=book.title if book else "",
        )

    # ------------------------- Transitions ------------------------- #
    def process_book_borrowing(self, member_pk: int, book_copy_id: int, borrowing_period_days: int,
                               today: Optional[date] = None) -> BorrowingTransaction:
        """Open a loan of ``book_copy_id`` to ``member_pk`` due ``borrowing_period_days`` from today.

        The member's status and allowance are checked again inside the same
        transaction that inserts the loan and flips the copy from available
        to borrowed.
        """
        today = today or date.today()
        due_date = compute_due_date(today, borrowing_period_days)
        with self.store.atomic():
            member = self.store.get_member(member_pk)
            if member is None:
                raise NotFoundError(f"Member {member_pk} not found.")
            if not member.is_active:
                raise InvalidStateError(f"Member {member.member_id} is {member.status.value}; only active members may borrow.")
            if self.store.count_open_borrowings(member_pk) >= member.max_books_allowed:
                raise InvalidStateError(
                    f"Member {member.member_id} has reached the borrowing limit of {member.max_books_allowed} books."
                )
            copy = self.store.get_book_copy(book_copy_id)
            if copy is None:
                raise NotFoundError(f"Book copy {book_copy_id} not found.")
            if copy.status != CopyStatus.AVAILABLE:
                raise InvalidStateError(f"Copy {copy.accession_number} is {copy.status.value}, not available.")

            loan = self.store.insert_borrowing(member_pk, book_copy_id, today, due_date)
            self.store.update_copy_status(book_copy_id, CopyStatus.BORROWED, expected=CopyStatus.AVAILABLE)

        logger.info(f"Loan {loan.id} opened: copy {copy.accession_number} to {member.member_id}, due {due_date}")
        return loan

    def process_book_return(self, transaction_id: int, book_copy_id: int, member_pk: int,
                            fine_rate_per_day: Union[Decimal, int, str], due_date: Union[date, datetime],
                            today: Optional[date] = None) -> ReturnResult:
        """Close an open loan, put the copy back on the shelf and fine a late return.

        Closing the loan and releasing the copy commit together. The fine is
        written afterwards; if that write fails the return still stands and
        the failure is reported in ``ReturnResult.fine_error``.
        """
        today = today or date.today()
        with self.store.atomic():
            loan = self.store.get_borrowing(transaction_id)
            if loan is None:
                raise NotFoundError(f"Borrowing transaction {transaction_id} not found.")
            if not loan.is_open:
                logger.warning(f"Return refused: loan {transaction_id} was already closed on {loan.return_date}")
                raise InvalidStateError(f"Borrowing transaction {transaction_id} has no open loan to return.")
            if loan.book_copy_id != book_copy_id or loan.member_id != member_pk:
                raise InvalidStateError(
                    f"Borrowing transaction {transaction_id} does not belong to copy {book_copy_id} and member {member_pk}."
                )
            closed = self.store.close_borrowing(transaction_id, today)
            self.store.update_copy_status(book_copy_id, CopyStatus.AVAILABLE, expected=CopyStatus.BORROWED)

        logger.info(f"Loan {transaction_id} closed on {today}")

        days_overdue = compute_days_overdue(due_date, today)
        result = ReturnResult(transaction=closed, days_overdue=days_overdue)
        if days_overdue > 0:
            amount, reason = overdue_fine_terms(days_overdue, fine_rate_per_day)
            try:
                result.fine = self.store.insert_fine(member_pk, transaction_id, amount, reason, today)
                logger.info(f"Fine {result.fine.id} created for loan {transaction_id}: {amount} ({reason})")
            except LibraryError as exc:
                logger.error(f"Loan {transaction_id} returned but its fine of {amount} could not be recorded: {exc}")
                result.fine_error = str(exc)
        return result

    # TODO: renewals. renewal_count and Member.renewal_limit are stored, but no
    # rule for the extended due date has been agreed on yet.

    # ------------------------- Desk workflows ------------------------- #
    def borrow(self, member_id: str, accession_number: str, today: Optional[date] = None) -> BorrowingTransaction:
        """Look up both parties, check eligibility and check the copy out."""
        member = self.lookup_member_for_borrowing(member_id)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found.")
        copy = self.lookup_book_copy_for_borrowing(accession_number)
        if copy is None:
            raise NotFoundError(f"Copy {accession_number} not found.")
        check_borrowing_eligibility(member, copy)
        return self.process_book_borrowing(member.id, copy.id, member.borrowing_period_days, today=today)

    def return_copy(self, accession_number: str, today: Optional[date] = None) -> ReturnResult:
        """Check in the copy with ``accession_number`` using the member's own fine rate."""
        info = self.lookup_borrowing_for_return(accession_number)
        if info is None:
            if self.lookup_book_copy_for_borrowing(accession_number) is None:
                raise NotFoundError(f"Copy {accession_number} not found.")
            raise InvalidStateError(f"Copy {accession_number} is not checked out.")
        return self.process_book_return(
            info.id, info.book_copy_id, info.member_pk, info.fine_rate_per_day, info.due_date, today=today
        )

    # ------------------------- Reports ------------------------- #
    def list_active_borrowings(self) -> List[BorrowingTransaction]:
        return self.store.list_borrowings(open_only=True)

    def list_overdue_borrowings(self, today: Optional[date] = None) -> List[BorrowingTransaction]:
        return self.store.list_borrowings(open_only=True, due_before=today or date.today())

    def list_member_borrowings(self, member_id: str) -> List[BorrowingTransaction]:
        member = self.store.find_member(member_id)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found.")
        return self.store.list_borrowings(member_pk=member.id)
