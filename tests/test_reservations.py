from datetime import date

import pytest

from entities import MemberStatus, ReservationStatus
from errors import InvalidStateError, NotFoundError


def test_reservation_expires_after_hold_period(lib, student, book_with_copy):
    book, _ = book_with_copy
    reservation = lib.reservations.create_reservation(student.id, book.id, today=date(2024, 3, 1))

    assert reservation.status == ReservationStatus.ACTIVE
    assert reservation.reservation_date == date(2024, 3, 1)
    assert reservation.expiration_date == date(2024, 3, 8)
    assert lib.reservations.pending_count() == 1


def test_duplicate_active_reservation_is_rejected(lib, student, book_with_copy):
    book, _ = book_with_copy
    lib.reservations.create_reservation(student.id, book.id)

    with pytest.raises(InvalidStateError, match="already has an active reservation"):
        lib.reservations.create_reservation(student.id, book.id)
    assert lib.reservations.pending_count() == 1


def test_cancelled_reservation_can_be_placed_again(lib, student, book_with_copy):
    book, _ = book_with_copy
    first = lib.reservations.create_reservation(student.id, book.id)
    lib.reservations.cancel_reservation(first.id)

    second = lib.reservations.create_reservation(student.id, book.id)
    assert second.id != first.id
    assert [r.id for r in lib.reservations.list_member_reservations(student.id)] == [second.id]


def test_inactive_member_cannot_reserve(lib, student, book_with_copy):
    book, _ = book_with_copy
    lib.members.set_status(student.member_id, MemberStatus.EXPIRED)
    with pytest.raises(InvalidStateError):
        lib.reservations.create_reservation(student.id, book.id)


def test_reserving_unknown_title(lib, student):
    with pytest.raises(NotFoundError):
        lib.reservations.create_reservation(student.id, 404)


def test_closed_reservation_stays_closed(lib, student, book_with_copy):
    book, _ = book_with_copy
    reservation = lib.reservations.create_reservation(student.id, book.id)
    fulfilled = lib.reservations.fulfill_reservation(reservation.id)
    assert fulfilled.status == ReservationStatus.FULFILLED

    with pytest.raises(InvalidStateError):
        lib.reservations.cancel_reservation(reservation.id)
    assert lib.reservations.list_active_reservations() == []
    assert lib.reservations.list_member_reservations(student.id)[0].status == ReservationStatus.FULFILLED
