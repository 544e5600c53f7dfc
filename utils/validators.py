import re
from typing import Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_ACCESSION_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]{0,63}$")


class ISBNValidator:
    """ISBN-10 / ISBN-13 checks for catalog entries. ISBNs are optional on a title."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return re.sub(r"[^0-9Xx]", "", raw).upper()

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            if not s[:9].isdigit() or not (s[9].isdigit() or s[9] == "X"):
                return False
            check = 10 if s[9] == "X" else int(s[9])
            total = sum(i * int(ch) for i, ch in enumerate(s[:9], 1)) + 10 * check
            return total % 11 == 0
        if len(s) == 13 and s.isdigit():
            total = sum((1 if i % 2 == 0 else 3) * int(ch) for i, ch in enumerate(s[:12]))
            return (10 - total % 10) % 10 == int(s[12])
        return False


class MemberValidator:
    """Checks on registration input."""

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        if name is None:
            return False
        t = name.strip()
        return bool(t) and any(c.isalpha() for c in t)

    @staticmethod
    def validate_email(email: Optional[str]) -> bool:
        if email is None:
            return False
        return bool(_EMAIL_RE.match(email.strip()))


class AccessionValidator:
    """Accession numbers are the labels stuck on physical copies (e.g. ACC-000123)."""

    @staticmethod
    def validate(accession_number: Optional[str]) -> bool:
        if accession_number is None:
            return False
        return bool(_ACCESSION_RE.match(accession_number.strip()))
