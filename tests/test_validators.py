import pytest

from utils.validators import AccessionValidator, ISBNValidator, MemberValidator


@pytest.mark.parametrize("isbn", ["0-262-51087-1", "978-0-262-51087-5", "080442957X"])
def test_valid_isbns(isbn):
    assert ISBNValidator.is_valid_isbn(isbn)


@pytest.mark.parametrize("isbn", ["0262510872", "9780262510876", "12345", "", None])
def test_invalid_isbns(isbn):
    assert not ISBNValidator.is_valid_isbn(isbn)


def test_normalize_isbn():
    assert ISBNValidator.normalize_isbn(" 0-8044-2957-x ") == "080442957X"


def test_member_validator():
    assert MemberValidator.validate_name("Ada")
    assert not MemberValidator.validate_name("1234")
    assert MemberValidator.validate_email("ada@example.org")
    assert not MemberValidator.validate_email("ada@localhost")


@pytest.mark.parametrize("value, ok", [("ACC-0001", True), ("B/12.3", True), ("-lead", False), ("a b", False)])
def test_accession_validator(value, ok):
    assert AccessionValidator.validate(value) is ok
