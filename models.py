from datetime import date
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func

from database import Base
from validators import (
    EMAIL_PATTERN,
    ISBN_PATTERNS,
    BorrowStatus,
    FineStatus,
    FineType,
    Gender,
    MembershipType,
    ReservationStatus,
    enum_values,
    parse_email,
    parse_isbn,
)


# --- Constraint helpers ---
# Regex and "today" checks need dialect-specific SQL. REGEXP on SQLite is the
# Python function SQLAlchemy's pysqlite dialect installs on every connection.
# SQLite refuses CURRENT_DATE inside CHECK, so those checks are PostgreSQL only
# and the @validates hooks below cover every backend.

def _regexp_checks(column_name, patterns, name):
    pg = " OR ".join(f"{column_name} ~ '{p}'" for p in patterns)
    other = " OR ".join(f"{column_name} REGEXP '{p}'" for p in patterns)
    return (
        CheckConstraint(pg, name=name).ddl_if(dialect="postgresql"),
        CheckConstraint(other, name=name).ddl_if(dialect=("sqlite", "mysql", "mariadb")),
    )


def _not_in_future(column_name, name):
    return CheckConstraint(
        f"{column_name} <= CURRENT_DATE", name=name
    ).ddl_if(dialect="postgresql")


def _not_after_this_year(column_name, name):
    return CheckConstraint(
        f"{column_name} <= EXTRACT(YEAR FROM CURRENT_DATE)", name=name
    ).ddl_if(dialect="postgresql")


def _one_of(column_name, enum_cls, name):
    allowed = ", ".join(f"'{v}'" for v in enum_values(enum_cls))
    return CheckConstraint(f"{column_name} IN ({allowed})", name=name)


def _check_not_future(value, label):
    if value is not None and value > date.today():
        raise ValueError(f"{label} cannot be in the future")
    return value


def _check_year(value, label):
    if value is not None and value > date.today().year:
        raise ValueError(f"{label} cannot be after the current year")
    return value


# Matches idx_book_search so PostgreSQL can use the index for catalog search
BOOK_SEARCH_VECTOR = (
    "to_tsvector('english', coalesce(title, '') || ' ' || "
    "coalesce(subtitle, '') || ' ' || coalesce(description, ''))"
)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# --- Catalog ---

class Author(TimestampMixin, Base):
    __tablename__ = "authors"

    author_id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    birth_date = Column(Date, nullable=True)
    death_date = Column(Date, nullable=True)
    nationality = Column(String(50), nullable=True)
    biography = Column(Text, nullable=True)

    book_links = relationship(
        "BookAuthor", back_populates="author", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("death_date IS NULL OR death_date >= birth_date", name="chk_birth_death"),
        _not_in_future("birth_date", "chk_birth_future"),
        Index("idx_author_name", "last_name", "first_name"),
        Index("idx_author_nationality", "nationality"),
    )

    @validates("birth_date")
    def validate_birth_date(self, key, value):
        _check_not_future(value, "Birth date")
        if value and self.death_date and self.death_date < value:
            raise ValueError("Death date cannot be before birth date")
        return value

    @validates("death_date")
    def validate_death_date(self, key, value):
        if value and self.birth_date and value < self.birth_date:
            raise ValueError("Death date cannot be before birth date")
        return value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Publisher(TimestampMixin, Base):
    __tablename__ = "publishers"

    publisher_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    address = Column(Text, nullable=True)
    city = Column(String(50), nullable=True)
    state = Column(String(50), nullable=True)
    country = Column(String(50), nullable=True)
    postal_code = Column(String(20), nullable=True)
    phone = Column(String(20), nullable=True)
    email = Column(String(100), nullable=True)
    website = Column(String(100), nullable=True)
    established_year = Column(SmallInteger, nullable=True)

    books = relationship("Book", back_populates="publisher", passive_deletes=True)

    __table_args__ = (
        _not_after_this_year("established_year", "chk_established_year"),
        *_regexp_checks("email", [EMAIL_PATTERN], "chk_email_format"),
        Index("idx_publisher_name", "name"),
        Index("idx_publisher_country", "country"),
    )

    @validates("email")
    def validate_email(self, key, value):
        return parse_email(value) if value is not None else None

    @validates("established_year")
    def validate_established_year(self, key, value):
        return _check_year(value, "Established year")


class Category(TimestampMixin, Base):
    """Book category; categories form a tree through ``parent_category_id``."""
    __tablename__ = "categories"

    category_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    parent_category_id = Column(
        Integer, ForeignKey("categories.category_id", ondelete="SET NULL"), nullable=True
    )

    parent = relationship("Category", remote_side=[category_id], back_populates="children")
    children = relationship("Category", back_populates="parent", passive_deletes=True)
    # "all": leave the referencing books alone so the RESTRICT rule decides
    books = relationship("Book", back_populates="category", passive_deletes="all")

    __table_args__ = (
        Index("idx_category_name", "name"),
        Index("idx_parent_category", "parent_category_id"),
    )


class Book(TimestampMixin, Base):
    __tablename__ = "books"

    book_id = Column(Integer, primary_key=True, autoincrement=True)
    isbn = Column(String(20), unique=True, nullable=True)
    title = Column(String(255), nullable=False)
    subtitle = Column(String(255), nullable=True)
    edition = Column(String(50), nullable=True)
    publication_year = Column(SmallInteger, nullable=True)
    pages = Column(Integer, nullable=True)
    language = Column(String(50), default="English", server_default="English")
    description = Column(Text, nullable=True)
    publisher_id = Column(
        Integer, ForeignKey("publishers.publisher_id", ondelete="SET NULL"), nullable=True
    )
    category_id = Column(
        Integer, ForeignKey("categories.category_id", ondelete="RESTRICT"), nullable=False
    )
    total_copies = Column(Integer, nullable=False, default=1, server_default="1")
    available_copies = Column(Integer, nullable=False, default=1, server_default="1")
    shelf_location = Column(String(20), nullable=True)

    publisher = relationship("Publisher", back_populates="books")
    category = relationship("Category", back_populates="books")
    author_links = relationship(
        "BookAuthor",
        back_populates="book",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="BookAuthor.author_order",
    )
    borrowings = relationship(
        "BorrowingRecord", back_populates="book", cascade="all, delete-orphan", passive_deletes=True
    )
    reservations = relationship(
        "Reservation", back_populates="book", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        *_regexp_checks("isbn", ISBN_PATTERNS, "chk_isbn_format"),
        _not_after_this_year("publication_year", "chk_publication_year"),
        CheckConstraint("pages > 0", name="chk_pages"),
        CheckConstraint(
            "total_copies >= 0 AND available_copies >= 0 AND available_copies <= total_copies",
            name="chk_copies",
        ),
        Index("idx_book_title", "title"),
        Index("idx_book_isbn", "isbn"),
        Index("idx_book_publisher", "publisher_id"),
        Index("idx_book_category", "category_id"),
        Index("idx_book_year", "publication_year"),
        Index("idx_book_search", text(BOOK_SEARCH_VECTOR), postgresql_using="gin").ddl_if(dialect="postgresql"),
    )

    @validates("isbn")
    def validate_isbn(self, key, value):
        return parse_isbn(value) if value is not None else None

    @validates("publication_year")
    def validate_publication_year(self, key, value):
        return _check_year(value, "Publication year")

    @property
    def authors(self):
        return [link.author for link in self.author_links]


class BookAuthor(Base):
    """Junction row linking a book to one of its authors, ranked by ``author_order``."""
    __tablename__ = "book_authors"

    book_id = Column(Integer, ForeignKey("books.book_id", ondelete="CASCADE"), primary_key=True)
    author_id = Column(Integer, ForeignKey("authors.author_id", ondelete="CASCADE"), primary_key=True)
    author_order = Column(SmallInteger, default=1, server_default="1")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    book = relationship("Book", back_populates="author_links")
    author = relationship("Author", back_populates="book_links")

    __table_args__ = (
        CheckConstraint("author_order > 0", name="chk_author_order"),
        Index("idx_book_authors_book", "book_id"),
        Index("idx_book_authors_author", "author_id"),
    )


# --- People ---

class Member(TimestampMixin, Base):
    __tablename__ = "members"

    member_id = Column(Integer, primary_key=True, autoincrement=True)
    membership_number = Column(String(20), nullable=False, unique=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(20), nullable=True)
    email = Column(String(100), unique=True, nullable=True)
    phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(50), nullable=True)
    state = Column(String(50), nullable=True)
    postal_code = Column(String(20), nullable=True)
    membership_type = Column(
        String(20), nullable=False, default=MembershipType.PUBLIC.value, server_default=MembershipType.PUBLIC.value
    )
    membership_start_date = Column(Date, nullable=False, default=date.today)
    membership_end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    # Running total of open fines, maintained by crud.add_fine, pay_fine, waive_fine and delete_fine
    fine_balance = Column(Numeric(8, 2), nullable=False, default=Decimal("0.00"), server_default="0")

    borrowings = relationship(
        "BorrowingRecord", back_populates="member", cascade="all, delete-orphan", passive_deletes=True
    )
    reservations = relationship(
        "Reservation", back_populates="member", cascade="all, delete-orphan", passive_deletes=True
    )
    fines = relationship("Fine", back_populates="member", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        CheckConstraint(
            "membership_end_date IS NULL OR membership_end_date >= membership_start_date",
            name="chk_member_dates",
        ),
        _not_in_future("date_of_birth", "chk_member_birth"),
        *_regexp_checks("email", [EMAIL_PATTERN], "chk_email_format_member"),
        CheckConstraint("fine_balance >= 0", name="chk_fine_balance"),
        _one_of("membership_type", MembershipType, "chk_membership_type"),
        _one_of("gender", Gender, "chk_member_gender"),
        Index("idx_member_name", "last_name", "first_name"),
        Index("idx_membership_number", "membership_number"),
        Index("idx_member_email", "email"),
        Index("idx_membership_type", "membership_type"),
        Index("idx_member_active", "is_active"),
        Index("idx_membership_date_range", "membership_start_date", "membership_end_date"),
    )

    @validates("email")
    def validate_email(self, key, value):
        return parse_email(value) if value is not None else None

    @validates("date_of_birth")
    def validate_date_of_birth(self, key, value):
        return _check_not_future(value, "Date of birth")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Staff(TimestampMixin, Base):
    __tablename__ = "staff"

    staff_id = Column(Integer, primary_key=True, autoincrement=True)
    employee_id = Column(String(20), nullable=False, unique=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    position = Column(String(100), nullable=False)
    department = Column(String(100), nullable=True)
    email = Column(String(100), nullable=False, unique=True)
    phone = Column(String(20), nullable=True)
    hire_date = Column(Date, nullable=False, default=date.today)
    salary = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    borrowings = relationship("BorrowingRecord", back_populates="staff", passive_deletes=True)

    __table_args__ = (
        _not_in_future("hire_date", "chk_hire_date"),
        CheckConstraint("salary >= 0", name="chk_salary"),
        *_regexp_checks("email", [EMAIL_PATTERN], "chk_email_format_staff"),
        Index("idx_staff_name", "last_name", "first_name"),
        Index("idx_employee_id", "employee_id"),
        Index("idx_staff_email", "email"),
        Index("idx_staff_position", "position"),
        Index("idx_staff_active", "is_active"),
    )

    @validates("email")
    def validate_email(self, key, value):
        return parse_email(value)

    @validates("hire_date")
    def validate_hire_date(self, key, value):
        return _check_not_future(value, "Hire date")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


# --- Circulation ---

class BorrowingRecord(TimestampMixin, Base):
    __tablename__ = "borrowing_records"

    borrowing_id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.member_id", ondelete="CASCADE"), nullable=False)
    book_id = Column(Integer, ForeignKey("books.book_id", ondelete="CASCADE"), nullable=False)
    staff_id = Column(Integer, ForeignKey("staff.staff_id", ondelete="SET NULL"), nullable=True)
    borrow_date = Column(Date, nullable=False, default=date.today)
    due_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=True)
    status = Column(
        String(20), nullable=False, default=BorrowStatus.BORROWED.value, server_default=BorrowStatus.BORROWED.value
    )
    renewal_count = Column(SmallInteger, nullable=False, default=0, server_default="0")
    notes = Column(Text, nullable=True)

    member = relationship("Member", back_populates="borrowings")
    book = relationship("Book", back_populates="borrowings")
    staff = relationship("Staff", back_populates="borrowings")
    fines = relationship("Fine", back_populates="borrowing", passive_deletes=True)

    __table_args__ = (
        CheckConstraint("due_date >= borrow_date", name="chk_due_date"),
        CheckConstraint("return_date IS NULL OR return_date >= borrow_date", name="chk_return_date"),
        CheckConstraint("renewal_count >= 0 AND renewal_count <= 5", name="chk_renewal_count"),
        _one_of("status", BorrowStatus, "chk_borrowing_status"),
        Index("idx_borrowing_member", "member_id"),
        Index("idx_borrowing_book", "book_id"),
        Index("idx_borrowing_staff", "staff_id"),
        Index("idx_borrow_date", "borrow_date"),
        Index("idx_due_date", "due_date"),
        Index("idx_status", "status"),
        Index("idx_overdue", "status", "due_date"),
        Index("idx_borrowing_member_status", "member_id", "status"),
        Index("idx_borrowing_book_status", "book_id", "status"),
        Index("idx_borrowing_due_status", "due_date", "status"),
        Index("idx_borrowing_date_range", "borrow_date", "return_date"),
    )


class Reservation(TimestampMixin, Base):
    __tablename__ = "reservations"

    reservation_id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.member_id", ondelete="CASCADE"), nullable=False)
    book_id = Column(Integer, ForeignKey("books.book_id", ondelete="CASCADE"), nullable=False)
    reservation_date = Column(Date, nullable=False, default=date.today)
    expiry_date = Column(Date, nullable=False)
    status = Column(
        String(20),
        nullable=False,
        default=ReservationStatus.ACTIVE.value,
        server_default=ReservationStatus.ACTIVE.value,
    )
    notes = Column(Text, nullable=True)

    member = relationship("Member", back_populates="reservations")
    book = relationship("Book", back_populates="reservations")

    __table_args__ = (
        CheckConstraint("expiry_date >= reservation_date", name="chk_expiry_date"),
        _one_of("status", ReservationStatus, "chk_reservation_status"),
        # one row per (member, book, status), not one active reservation per pair
        UniqueConstraint("member_id", "book_id", "status", name="unique_active_reservation"),
        Index("idx_reservation_member", "member_id"),
        Index("idx_reservation_book", "book_id"),
        Index("idx_reservation_date", "reservation_date"),
        Index("idx_expiry_date", "expiry_date"),
        Index("idx_reservation_status", "status"),
    )


class Fine(TimestampMixin, Base):
    __tablename__ = "fines"

    fine_id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.member_id", ondelete="CASCADE"), nullable=False)
    borrowing_id = Column(
        Integer, ForeignKey("borrowing_records.borrowing_id", ondelete="SET NULL"), nullable=True
    )
    fine_type = Column(String(20), nullable=False)
    amount = Column(Numeric(8, 2), nullable=False)
    amount_paid = Column(Numeric(8, 2), nullable=False, default=Decimal("0.00"), server_default="0")
    description = Column(Text, nullable=True)
    fine_date = Column(Date, nullable=False, default=date.today)
    paid_date = Column(Date, nullable=True)
    status = Column(
        String(20), nullable=False, default=FineStatus.PENDING.value, server_default=FineStatus.PENDING.value
    )

    member = relationship("Member", back_populates="fines")
    borrowing = relationship("BorrowingRecord", back_populates="fines")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="chk_fine_amount"),
        CheckConstraint("amount_paid >= 0 AND amount_paid <= amount", name="chk_fine_amount_paid"),
        CheckConstraint("paid_date IS NULL OR paid_date >= fine_date", name="chk_paid_date"),
        _one_of("fine_type", FineType, "chk_fine_type"),
        _one_of("status", FineStatus, "chk_fine_status"),
        Index("idx_fine_member", "member_id"),
        Index("idx_fine_borrowing", "borrowing_id"),
        Index("idx_fine_date", "fine_date"),
        Index("idx_fine_status", "status"),
        Index("idx_fine_type", "fine_type"),
    )

    @property
    def outstanding(self) -> Decimal:
        return Decimal(self.amount) - Decimal(self.amount_paid or 0)


# Name search indexes
Index("idx_author_full_name", Author.first_name + " " + Author.last_name)
Index("idx_member_full_name", Member.first_name + " " + Member.last_name)
Index("idx_staff_full_name", Staff.first_name + " " + Staff.last_name)
