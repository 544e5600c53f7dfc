"""Record types shared by the store, the services and the outer surfaces.

Rows come out of SQLite as ``sqlite3.Row`` objects with ISO date strings and
decimal amounts stored as text; each record type knows how to build itself
from such a row (``from_row``) and how to flatten itself back into plain
JSON-friendly values (``to_dict``).
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class MemberCategory(str, Enum):
    STUDENT = "student"
    FACULTY = "faculty"
    STAFF_MEMBER = "staff_member"
    GUEST = "guest"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class CopyStatus(str, Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"
    RESERVED = "reserved"
    LOST = "lost"
    DAMAGED = "damaged"
    FOR_REPAIR = "for_repair"


class FineState(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    WAIVED = "waived"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    # Timestamps such as "2024-01-01 10:00:00" keep only their calendar part
    return date.fromisoformat(str(value)[:10])


def _plain(value: Any) -> Any:
    if isinstance(value, Record):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


class Record:
    """Mixin giving dataclass records a JSON-friendly ``to_dict``."""

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: _plain(getattr(self, f.name)) for f in fields(self)}


@dataclass
class Member(Record):
    id: int
    member_id: str
    full_name: str
    email: str
    member_type: MemberCategory
    status: MemberStatus
    max_books_allowed: int
    borrowing_period_days: int
    renewal_limit: int
    fine_rate_per_day: Decimal
    registration_date: date
    phone: Optional[str] = None
    address: Optional[str] = None
    expiration_date: Optional[date] = None

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    @staticmethod
    def from_row(row) -> "Member":
        return Member(
            id=row["id"],
            member_id=row["member_id"],
            full_name=row["full_name"],
            email=row["email"],
            member_type=MemberCategory(row["member_type"]),
            status=MemberStatus(row["status"]),
            max_books_allowed=row["max_books_allowed"],
            borrowing_period_days=row["borrowing_period_days"],
            renewal_limit=row["renewal_limit"],
            fine_rate_per_day=Decimal(str(row["fine_rate_per_day"])),
            registration_date=parse_date(row["registration_date"]),
            phone=row["phone"],
            address=row["address"],
            expiration_date=parse_date(row["expiration_date"]),
        )


@dataclass
class Book(Record):
    id: int
    title: str
    author: Optional[str] = None
    isbn: Optional[str] = None
    publication_year: Optional[int] = None

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        by = f" by {self.author}" if self.author else ""
        return f"{self.title}{by} (ISBN: {self.isbn or '-'})"

    @staticmethod
    def from_row(row) -> "Book":
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            isbn=row["isbn"],
            publication_year=row["publication_year"],
        )


@dataclass
class BookCopy(Record):
    id: int
    accession_number: str
    book_id: int
    status: CopyStatus
    location: Optional[str] = None
    acquired_date: Optional[date] = None

    @staticmethod
    def from_row(row) -> "BookCopy":
        return BookCopy(
            id=row["id"],
            accession_number=row["accession_number"],
            book_id=row["book_id"],
            status=CopyStatus(row["status"]),
            location=row["location"],
            acquired_date=parse_date(row["acquired_date"]),
        )


@dataclass
class BorrowingTransaction(Record):
    id: int
    member_id: int
    book_copy_id: int
    borrowed_date: date
    due_date: date
    return_date: Optional[date] = None
    renewal_count: int = 0

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def is_overdue(self, today: Optional[date] = None) -> bool:
        today = today or date.today()
        return self.is_open and today > self.due_date

    @staticmethod
    def from_row(row) -> "BorrowingTransaction":
        return BorrowingTransaction(
            id=row["id"],
            member_id=row["member_id"],
            book_copy_id=row["book_copy_id"],
            borrowed_date=parse_date(row["borrowed_date"]),
            due_date=parse_date(row["due_date"]),
            return_date=parse_date(row["return_date"]),
            renewal_count=row["renewal_count"],
        )


@dataclass
class Fine(Record):
    id: int
    member_id: int
    amount: Decimal
    reason: str
    state: FineState = FineState.UNPAID
    transaction_id: Optional[int] = None
    payment_date: Optional[date] = None
    waiver_reason: Optional[str] = None
    created_date: Optional[date] = None

    @property
    def paid(self) -> bool:
        return self.state == FineState.PAID

    @property
    def waived(self) -> bool:
        return self.state == FineState.WAIVED

    @property
    def is_outstanding(self) -> bool:
        return self.state == FineState.UNPAID

    @staticmethod
    def from_row(row) -> "Fine":
        return Fine(
            id=row["id"],
            member_id=row["member_id"],
            amount=Decimal(str(row["amount"])),
            reason=row["reason"],
            state=FineState(row["state"]),
            transaction_id=row["transaction_id"],
            payment_date=parse_date(row["payment_date"]),
            waiver_reason=row["waiver_reason"],
            created_date=parse_date(row["created_at"]),
        )


@dataclass
class Reservation(Record):
    id: int
    member_id: int
    book_id: int
    reservation_date: date
    expiration_date: date
    status: ReservationStatus = ReservationStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE

    @staticmethod
    def from_row(row) -> "Reservation":
        return Reservation(
            id=row["id"],
            member_id=row["member_id"],
            book_id=row["book_id"],
            reservation_date=parse_date(row["reservation_date"]),
            expiration_date=parse_date(row["expiration_date"]),
            status=ReservationStatus(row["status"]),
        )
