from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Union

from entities import MemberCategory


@dataclass(frozen=True)
class Privileges:
    """Borrowing limits granted to a member category."""
    max_books: int
    borrowing_days: int
    renewal_limit: int
    fine_rate_per_day: Decimal


_PRIVILEGE_TABLE: Dict[MemberCategory, Privileges] = {
    MemberCategory.FACULTY: Privileges(10, 30, 3, Decimal("3")),
    MemberCategory.STAFF_MEMBER: Privileges(7, 21, 2, Decimal("4")),
    MemberCategory.STUDENT: Privileges(5, 14, 2, Decimal("5")),
    MemberCategory.GUEST: Privileges(2, 7, 1, Decimal("10")),
}


def privileges_for(category: Union[MemberCategory, str, None]) -> Privileges:
    """Return the privileges for a member category; unknown categories get the guest policy."""
    try:
        key = MemberCategory(category)
    except ValueError:
        key = MemberCategory.GUEST
    return _PRIVILEGE_TABLE[key]
