import logging
from datetime import date
from typing import List, Optional, Union

from entities import Member, MemberCategory, MemberStatus
from errors import InvalidStateError, NotFoundError
from privileges import privileges_for
from store import EntityStore
from utils.validators import MemberValidator

logger = logging.getLogger(__name__)


def format_member_id(year: int, sequence: int) -> str:
    return f"LIB-{year}-{sequence:05d}"


class MemberService:
    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def register_member(
        self,
        full_name: str,
        email: str,
        member_type: Union[MemberCategory, str] = MemberCategory.STUDENT,
        *,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Member:
        """Register a member and snapshot the borrowing privileges of their category.

        The snapshot is stored on the member row; later changes to the
        privilege table do not touch existing members.
        """
        if not MemberValidator.validate_name(full_name):
            raise ValueError("Full name cannot be empty.")
        if not MemberValidator.validate_email(email):
            raise ValueError(f"Invalid email address: {email!r}")
        category = MemberCategory(member_type)
        privileges = privileges_for(category)
        today = today or date.today()

        with self.store.atomic():
            if self.store.find_member_by_email(email.strip()):
                raise InvalidStateError("A member with this email already exists.")
            member = self.store.insert_member(
                Member(
                    id=0,
                    member_id=format_member_id(today.year, self.store.count_members() + 1),
                    full_name=full_name.strip(),
                    email=email.strip(),
                    member_type=category,
                    status=MemberStatus.ACTIVE,
                    max_books_allowed=privileges.max_books,
                    borrowing_period_days=privileges.borrowing_days,
                    renewal_limit=privileges.renewal_limit,
                    fine_rate_per_day=privileges.fine_rate_per_day,
                    registration_date=today,
                    phone=phone,
                    address=address,
                )
            )
        logger.info(f"Member {member.member_id} registered as {category.value}")
        return member

    def get_by_member_id(self, member_id: str) -> Optional[Member]:
        return self.store.find_member(member_id)

    def require(self, member_id: str) -> Member:
        member = self.store.find_member(member_id)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found.")
        return member

    def list_members(self) -> List[Member]:
        return self.store.list_members()

    def search_members(self, query: str) -> List[Member]:
        if not query or not query.strip():
            return self.store.list_members()
        return self.store.search_members(query)

    def set_status(self, member_id: str, status: Union[MemberStatus, str]) -> Member:
        member = self.require(member_id)
        status = MemberStatus(status)
        updated = self.store.update_member_status(member.id, status)
        logger.info(f"Member {member_id} status {member.status.value} -> {status.value}")
        return updated
