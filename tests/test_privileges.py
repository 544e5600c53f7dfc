from decimal import Decimal

import pytest

from entities import MemberCategory
from privileges import privileges_for


@pytest.mark.parametrize(
    "category, expected",
    [
        (MemberCategory.FACULTY, (10, 30, 3, Decimal("3"))),
        (MemberCategory.STAFF_MEMBER, (7, 21, 2, Decimal("4"))),
        (MemberCategory.STUDENT, (5, 14, 2, Decimal("5"))),
        (MemberCategory.GUEST, (2, 7, 1, Decimal("10"))),
    ],
)
def test_privilege_table(category, expected):
    p = privileges_for(category)
    assert (p.max_books, p.borrowing_days, p.renewal_limit, p.fine_rate_per_day) == expected


def test_category_given_as_string():
    assert privileges_for("faculty").max_books == 10


@pytest.mark.parametrize("category", ["visiting_scholar", "", None])
def test_unknown_category_falls_back_to_guest(category):
    assert privileges_for(category) == privileges_for(MemberCategory.GUEST)
