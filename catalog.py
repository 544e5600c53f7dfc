import logging
from datetime import date
from typing import List, Optional, Tuple, Union

from entities import Book, BookCopy, CopyStatus
from errors import InvalidStateError, NotFoundError
from store import EntityStore
from utils.validators import AccessionValidator, ISBNValidator

logger = logging.getLogger(__name__)


class CatalogService:
    """Titles and the physical copies that circulate."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def add_book(
        self,
        title: str,
        accession_number: str,
        *,
        author: Optional[str] = None,
        isbn: Optional[str] = None,
        publication_year: Optional[int] = None,
        location: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Tuple[Book, BookCopy]:
        """Create a title together with its first copy. Either both are stored or neither."""
        if not title or not title.strip():
            raise ValueError("Title cannot be empty.")
        if isbn:
            isbn = ISBNValidator.normalize_isbn(isbn)
            if not ISBNValidator.is_valid_isbn(isbn):
                raise ValueError("Invalid ISBN format.")
        self._check_accession(accession_number)

        with self.store.atomic():
            book = self.store.insert_book(title.strip(), (author or "").strip() or None, isbn or None, publication_year)
            copy = self.store.insert_copy(book.id, accession_number.strip(), location, today or date.today())
        logger.info(f"Book {book.id} added with first copy {copy.accession_number}")
        return book, copy

    def add_copy(self, book_id: int, accession_number: str, location: Optional[str] = None,
                 today: Optional[date] = None) -> BookCopy:
        self._check_accession(accession_number)
        with self.store.atomic():
            if self.store.get_book(book_id) is None:
                raise NotFoundError(f"Book {book_id} not found.")
            copy = self.store.insert_copy(book_id, accession_number.strip(), location, today or date.today())
        logger.info(f"Copy {copy.accession_number} added to book {book_id}")
        return copy

    def _check_accession(self, accession_number: str) -> None:
        if not AccessionValidator.validate(accession_number):
            raise ValueError(f"Invalid accession number: {accession_number!r}")
        if self.store.find_book_copy_by_accession(accession_number.strip()):
            raise InvalidStateError(f"Accession number {accession_number} is already in use.")

    def get_book(self, book_id: int) -> Book:
        book = self.store.get_book(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found.")
        return book

    def list_books(self) -> List[Book]:
        return self.store.list_books()

    def search_books(self, query: str) -> List[Book]:
        if not query or not query.strip():
            return self.store.list_books()
        return self.store.search_books(query)

    def list_copies(self, book_id: int) -> List[BookCopy]:
        self.get_book(book_id)
        return self.store.list_copies(book_id)

    def set_copy_status(self, accession_number: str, status: Union[CopyStatus, str]) -> BookCopy:
        """Shelf maintenance (lost, damaged, for repair, back to available).

        ``borrowed`` belongs to the circulation workflow and a copy that is out
        on loan has to be returned before its status can change here.
        """
        status = CopyStatus(status)
        if status == CopyStatus.BORROWED:
            raise InvalidStateError("Copies become borrowed only through check-out.")
        with self.store.atomic():
            copy = self.store.find_book_copy_by_accession(accession_number)
            if copy is None:
                raise NotFoundError(f"Copy {accession_number} not found.")
            if self.store.find_open_borrowing_by_copy(copy.id) is not None:
                raise InvalidStateError(f"Copy {accession_number} is on loan; return it first.")
            updated = self.store.update_copy_status(copy.id, status, expected=copy.status)
        logger.info(f"Copy {accession_number} status {copy.status.value} -> {status.value}")
        return updated
