class LibraryError(Exception):
    """Base exception for circulation errors."""


class NotFoundError(LibraryError, LookupError):
    """A member, copy, title, loan, fine or reservation does not exist."""


class InvalidStateError(LibraryError):
    """The records exist but their current state forbids the operation."""


class ConflictError(InvalidStateError):
    """A conditional write matched no row: another writer changed it first."""


class StoreFailure(LibraryError):
    """The underlying persistence call failed."""
