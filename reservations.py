import logging
from datetime import date, timedelta
from typing import List, Optional

from config import settings
from entities import Reservation, ReservationStatus
from errors import InvalidStateError, NotFoundError
from store import EntityStore

logger = logging.getLogger(__name__)


class ReservationService:
    """Holds placed by members on catalog titles."""

    def __init__(self, store: EntityStore, hold_days: Optional[int] = None) -> None:
        self.store = store
        self.hold_days = settings.reservation_hold_days if hold_days is None else hold_days

    def create_reservation(self, member_pk: int, book_id: int, today: Optional[date] = None) -> Reservation:
        """Reserve a title for an active member; one active reservation per member and title."""
        today = today or date.today()
        with self.store.atomic():
            member = self.store.get_member(member_pk)
            if member is None:
                raise NotFoundError(f"Member {member_pk} not found.")
            if not member.is_active:
                raise InvalidStateError(f"Member {member.member_id} account is not active.")
            if self.store.get_book(book_id) is None:
                raise NotFoundError(f"Book {book_id} not found.")
            existing = self.store.list_reservations(
                member_pk=member_pk, book_id=book_id, status=ReservationStatus.ACTIVE
            )
            if existing:
                logger.warning(f"Duplicate reservation refused: member {member.member_id}, book {book_id}")
                raise InvalidStateError(f"Member {member.member_id} already has an active reservation for this book.")
            reservation = self.store.insert_reservation(
                member_pk, book_id, today, today + timedelta(days=self.hold_days)
            )
        logger.info(f"Reservation {reservation.id} placed: book {book_id} for {member.member_id}, expires {reservation.expiration_date}")
        return reservation

    def _close(self, reservation_id: int, status: ReservationStatus) -> Reservation:
        reservation = self.store.get_reservation(reservation_id)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found.")
        if not reservation.is_active:
            raise InvalidStateError(f"Reservation {reservation_id} is already {reservation.status.value}.")
        reservation = self.store.update_reservation_status(reservation_id, status)
        logger.info(f"Reservation {reservation_id} {status.value}")
        return reservation

    def cancel_reservation(self, reservation_id: int) -> Reservation:
        return self._close(reservation_id, ReservationStatus.CANCELLED)

    def fulfill_reservation(self, reservation_id: int) -> Reservation:
        return self._close(reservation_id, ReservationStatus.FULFILLED)

    def list_active_reservations(self) -> List[Reservation]:
        return self.store.list_reservations(status=ReservationStatus.ACTIVE)

    def list_member_reservations(self, member_pk: int) -> List[Reservation]:
        """Active and fulfilled reservations of a member; cancelled ones are left out."""
        return [
            r for r in self.store.list_reservations(member_pk=member_pk)
            if r.status != ReservationStatus.CANCELLED
        ]

    def pending_count(self) -> int:
        return len(self.list_active_reservations())
