import re
from enum import Enum
from typing import Optional


class FormatError(ValueError):
    """Raised when a value does not match the format its column requires."""


# Same patterns the database check constraints use.
ISBN_PATTERNS = (
    r"^[0-9]{3}-[0-9]{1,5}-[0-9]{1,7}-[0-9]{1,7}-[0-9]$",
    r"^[0-9]{10}$",
    r"^[0-9]{13}$",
)
EMAIL_PATTERN = r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$"

_ISBN_RES = [re.compile(p) for p in ISBN_PATTERNS]
_EMAIL_RE = re.compile(EMAIL_PATTERN)


class MembershipType(str, Enum):
    STUDENT = "Student"
    FACULTY = "Faculty"
    STAFF = "Staff"
    PUBLIC = "Public"


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"
    UNDISCLOSED = "Prefer not to say"


class BorrowStatus(str, Enum):
    BORROWED = "Borrowed"
    RETURNED = "Returned"
    OVERDUE = "Overdue"
    LOST = "Lost"


class ReservationStatus(str, Enum):
    ACTIVE = "Active"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


class FineType(str, Enum):
    OVERDUE = "Overdue"
    LOST_BOOK = "Lost Book"
    DAMAGE = "Damage"
    PROCESSING_FEE = "Processing Fee"


class FineStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    WAIVED = "Waived"
    PARTIAL = "Partial"


# Statuses in which the copy is out of the building.
ON_LOAN_STATUSES = (BorrowStatus.BORROWED.value, BorrowStatus.OVERDUE.value)
# Fines that still count towards a member's balance.
OPEN_FINE_STATUSES = (FineStatus.PENDING.value, FineStatus.PARTIAL.value)


def is_valid_isbn(raw: Optional[str]) -> bool:
    if not raw:
        return False
    return any(r.fullmatch(raw) for r in _ISBN_RES)


def parse_isbn(raw: str) -> str:
    """Return ``raw`` stripped of surrounding whitespace if it is a valid ISBN.

    Accepted forms: hyphenated ISBN-13 (``978-0-06-112008-4``), ten digits,
    or thirteen digits. No checksum is computed; the format is what the
    ``books.isbn`` column accepts.
    """
    value = (raw or "").strip()
    if not is_valid_isbn(value):
        raise FormatError(f"Invalid ISBN: {raw!r}")
    return value


def parse_email(raw: str) -> str:
    value = (raw or "").strip()
    if not _EMAIL_RE.fullmatch(value):
        raise FormatError(f"Invalid email address: {raw!r}")
    return value


def enum_values(enum_cls) -> list:
    return [m.value for m in enum_cls]
