from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional

from validators import (
    BorrowStatus,
    FineStatus,
    FineType,
    Gender,
    MembershipType,
    ReservationStatus,
    parse_email,
    parse_isbn,
)


class _Input(BaseModel):
    # store enum members as their plain string values
    model_config = ConfigDict(use_enum_values=True, validate_default=True)


def _optional_email(value):
    return parse_email(value) if value is not None else None


# --- Authors ---

class AuthorBase(_Input):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    birth_date: Optional[date] = None
    death_date: Optional[date] = None
    nationality: Optional[str] = Field(None, max_length=50)
    biography: Optional[str] = None


class AuthorCreate(AuthorBase):
    pass


class AuthorUpdate(AuthorBase):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)


class AuthorOut(AuthorBase):
    author_id: int
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# --- Publishers ---

class PublisherBase(_Input):
    name: str = Field(..., min_length=1, max_length=100)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=50)
    state: Optional[str] = Field(None, max_length=50)
    country: Optional[str] = Field(None, max_length=50)
    postal_code: Optional[str] = Field(None, max_length=20)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=100)
    website: Optional[str] = Field(None, max_length=100)
    established_year: Optional[int] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, value):
        return _optional_email(value)


class PublisherCreate(PublisherBase):
    pass


class PublisherUpdate(PublisherBase):
    name: Optional[str] = Field(None, min_length=1, max_length=100)


class PublisherOut(PublisherBase):
    publisher_id: int
    model_config = ConfigDict(from_attributes=True)


# --- Categories ---

class CategoryBase(_Input):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    parent_category_id: Optional[int] = None


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(CategoryBase):
    name: Optional[str] = Field(None, min_length=1, max_length=50)


class CategoryOut(CategoryBase):
    category_id: int
    model_config = ConfigDict(from_attributes=True)


# --- Books ---

class BookBase(_Input):
    isbn: Optional[str] = Field(None, max_length=20)
    title: str = Field(..., min_length=1, max_length=255)
    subtitle: Optional[str] = Field(None, max_length=255)
    edition: Optional[str] = Field(None, max_length=50)
    publication_year: Optional[int] = None
    pages: Optional[int] = Field(None, gt=0)
    language: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    publisher_id: Optional[int] = None
    category_id: int
    shelf_location: Optional[str] = Field(None, max_length=20)

    @field_validator("isbn")
    @classmethod
    def check_isbn(cls, value):
        return parse_isbn(value) if value is not None else None


class BookCreate(BookBase):
    total_copies: int = Field(1, ge=0)
    # defaults to total_copies
    available_copies: Optional[int] = Field(None, ge=0)


class BookUpdate(BookBase):
    # copy counters are left out on purpose: they only move through crud bookkeeping
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    category_id: Optional[int] = None


class BookOut(BookBase):
    book_id: int
    total_copies: int
    available_copies: int
    model_config = ConfigDict(from_attributes=True)


class BookAuthorLink(_Input):
    book_id: int
    author_id: int
    author_order: int = Field(1, gt=0)


# --- Members ---

class MemberBase(_Input):
    membership_number: str = Field(..., min_length=1, max_length=20)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    email: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=50)
    state: Optional[str] = Field(None, max_length=50)
    postal_code: Optional[str] = Field(None, max_length=20)
    membership_type: MembershipType = MembershipType.PUBLIC
    membership_start_date: Optional[date] = None
    membership_end_date: Optional[date] = None
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def check_email(cls, value):
        return _optional_email(value)


class MemberCreate(MemberBase):
    pass


class MemberUpdate(MemberBase):
    # all fields optional for updates; fine_balance is never set directly
    membership_number: Optional[str] = Field(None, min_length=1, max_length=20)
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    membership_type: Optional[MembershipType] = None
    is_active: Optional[bool] = None


class MemberOut(MemberBase):
    member_id: int
    fine_balance: Decimal
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# --- Staff ---

class StaffBase(_Input):
    employee_id: str = Field(..., min_length=1, max_length=20)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    position: str = Field(..., min_length=1, max_length=100)
    department: Optional[str] = Field(None, max_length=100)
    email: str = Field(..., max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    hire_date: Optional[date] = None
    salary: Optional[Decimal] = Field(None, ge=0)
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def check_email(cls, value):
        return parse_email(value)


class StaffCreate(StaffBase):
    pass


class StaffUpdate(_Input):
    employee_id: Optional[str] = Field(None, min_length=1, max_length=20)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position: Optional[str] = None
    department: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    hire_date: Optional[date] = None
    salary: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, value):
        return _optional_email(value)


class StaffOut(StaffBase):
    staff_id: int
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# --- Borrowing ---

class BorrowingBase(_Input):
    member_id: int
    book_id: int
    staff_id: Optional[int] = None
    borrow_date: Optional[date] = None
    due_date: date
    return_date: Optional[date] = None
    status: BorrowStatus = BorrowStatus.BORROWED
    renewal_count: int = Field(0, ge=0, le=5)
    notes: Optional[str] = None


class BorrowingCreate(BorrowingBase):
    pass


class BorrowingUpdate(_Input):
    # member_id / book_id are fixed once the record exists
    staff_id: Optional[int] = None
    due_date: Optional[date] = None
    return_date: Optional[date] = None
    status: Optional[BorrowStatus] = None
    renewal_count: Optional[int] = Field(None, ge=0, le=5)
    notes: Optional[str] = None


class BorrowingOut(BorrowingBase):
    borrowing_id: int
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# --- Reservations ---

class ReservationBase(_Input):
    member_id: int
    book_id: int
    reservation_date: Optional[date] = None
    expiry_date: date
    status: ReservationStatus = ReservationStatus.ACTIVE
    notes: Optional[str] = None


class ReservationCreate(ReservationBase):
    pass


class ReservationUpdate(_Input):
    expiry_date: Optional[date] = None
    status: Optional[ReservationStatus] = None
    notes: Optional[str] = None


class ReservationOut(ReservationBase):
    reservation_id: int
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# --- Fines ---

class FineBase(_Input):
    member_id: int
    borrowing_id: Optional[int] = None
    fine_type: FineType
    amount: Decimal = Field(..., ge=0, max_digits=8, decimal_places=2)
    description: Optional[str] = None
    fine_date: Optional[date] = None


class FineCreate(FineBase):
    pass


class FineUpdate(_Input):
    # amount and status move only through pay_fine / waive_fine
    borrowing_id: Optional[int] = None
    fine_type: Optional[FineType] = None
    description: Optional[str] = None


class FineOut(FineBase):
    fine_id: int
    amount_paid: Decimal
    paid_date: Optional[date] = None
    status: FineStatus
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class FinePayment(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=8, decimal_places=2)
    paid_date: Optional[date] = None
