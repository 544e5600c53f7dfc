import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from config import settings
from entities import Fine, FineState
from errors import InvalidStateError, NotFoundError
from store import EntityStore

logger = logging.getLogger(__name__)


def overdue_fine_terms(days_overdue: int, fine_rate_per_day: Union[Decimal, int, str]) -> Tuple[Decimal, str]:
    """Return ``(amount, reason)`` for a fine covering ``days_overdue`` whole days."""
    amount = Decimal(days_overdue) * Decimal(str(fine_rate_per_day))
    return amount, f"Overdue by {days_overdue} days"


class FineService:
    """Pay / waive lifecycle of fines plus the fine listings used by reports."""

    def __init__(self, store: EntityStore, default_waiver_reason: Optional[str] = None) -> None:
        self.store = store
        self.default_waiver_reason = default_waiver_reason or settings.default_waiver_reason

    def get_fine(self, fine_id: int) -> Fine:
        fine = self.store.get_fine(fine_id)
        if fine is None:
            raise NotFoundError(f"Fine {fine_id} not found.")
        return fine

    def _require_outstanding(self, fine_id: int) -> Fine:
        fine = self.get_fine(fine_id)
        if not fine.is_outstanding:
            logger.warning(f"Refused to settle fine {fine_id}: already {fine.state.value}")
            raise InvalidStateError(f"Fine {fine_id} is already {fine.state.value}.")
        return fine

    def pay_fine(self, fine_id: int, today: Optional[date] = None) -> Fine:
        """Mark an unpaid fine as paid today. Settled fines are rejected."""
        self._require_outstanding(fine_id)
        fine = self.store.mark_fine_paid(fine_id, today or date.today())
        logger.info(f"Fine {fine_id} paid: {fine.amount}")
        return fine

    def waive_fine(self, fine_id: int, reason: Optional[str] = None) -> Fine:
        """Waive an unpaid fine, recording why. Settled fines are rejected."""
        self._require_outstanding(fine_id)
        reason = (reason or "").strip() or self.default_waiver_reason
        fine = self.store.mark_fine_waived(fine_id, reason)
        logger.info(f"Fine {fine_id} waived: {reason}")
        return fine

    def create_overdue_fine(self, member_pk: int, transaction_id: Optional[int], days_overdue: int,
                            fine_rate_per_day: Union[Decimal, int, str],
                            today: Optional[date] = None) -> Fine:
        if days_overdue <= 0:
            raise ValueError("An overdue fine needs at least one day overdue.")
        amount, reason = overdue_fine_terms(days_overdue, fine_rate_per_day)
        fine = self.store.insert_fine(member_pk, transaction_id, amount, reason, today or date.today())
        logger.info(f"Fine {fine.id} created for member {member_pk}: {amount} ({reason})")
        return fine

    # ------------------------- Listings ------------------------- #
    def list_fines(self) -> List[Fine]:
        return self.store.list_fines()

    def list_unpaid_fines(self) -> List[Fine]:
        return self.store.list_fines(state=FineState.UNPAID)

    def list_member_fines(self, member_id: str) -> List[Fine]:
        member = self.store.find_member(member_id)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found.")
        return self.store.list_fines(member_pk=member.id)

    def total_unpaid(self, member_pk: Optional[int] = None) -> Decimal:
        fines = self.store.list_fines(member_pk=member_pk, state=FineState.UNPAID)
        return sum((f.amount for f in fines), Decimal("0"))
