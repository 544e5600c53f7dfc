from datetime import date

import pytest

from entities import MemberCategory
from library import Library

REGISTRATION_DAY = date(2024, 1, 1)


@pytest.fixture
def db_file(tmp_path, request):
    # One database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def student(lib):
    return lib.members.register_member(
        "Ada Lovelace", "ada@example.org", MemberCategory.STUDENT, today=REGISTRATION_DAY
    )


@pytest.fixture
def book_with_copy(lib):
    """A title with one available copy, accession ACC-0001."""
    return lib.catalog.add_book(
        "Structure and Interpretation of Computer Programs",
        "ACC-0001",
        author="Abelson",
        isbn="0-262-51087-1",
        today=REGISTRATION_DAY,
    )
