from datetime import date
from typing import Any, Dict, Optional

from catalog import CatalogService
from circulation import CirculationService
from config import settings
from entities import CopyStatus, MemberStatus
from fines import FineService
from members import MemberService
from reservations import ReservationService
from store import EntityStore


class Library:
    """Composition root: one entity store shared by explicitly wired services.

    Nothing here is a global. The CLI builds one ``Library`` per invocation and
    the API keeps one on ``app.state``; tests build one per database file.
    """

    def __init__(self, db_file: Optional[str] = None, store: Optional[EntityStore] = None) -> None:
        self.db_file = db_file or settings.database_file
        self.store = store or EntityStore(self.db_file)

        self.members = MemberService(self.store)
        self.catalog = CatalogService(self.store)
        self.circulation = CirculationService(self.store)
        self.fines = FineService(self.store, settings.default_waiver_reason)
        self.reservations = ReservationService(self.store, settings.reservation_hold_days)

    def get_statistics(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Library-wide counts for the stats screen and endpoint."""
        return {
            "total_copies": self.store.count_copies(),
            "available_copies": self.store.count_copies(CopyStatus.AVAILABLE),
            "active_members": self.store.count_members(MemberStatus.ACTIVE),
            "active_borrowings": len(self.circulation.list_active_borrowings()),
            "overdue_borrowings": len(self.circulation.list_overdue_borrowings(today)),
            "pending_reservations": self.reservations.pending_count(),
            "unpaid_fines_total": self.fines.total_unpaid(),
        }

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None
