import logging
from contextlib import contextmanager
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, literal_column, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import (
    BOOK_SEARCH_VECTOR,
    Author,
    Book,
    BookAuthor,
    BorrowingRecord,
    Category,
    Fine,
    Member,
    Publisher,
    Reservation,
    Staff,
)
from schemas import (
    AuthorCreate,
    AuthorUpdate,
    BookAuthorLink,
    BookCreate,
    BookUpdate,
    BorrowingCreate,
    BorrowingUpdate,
    CategoryCreate,
    CategoryUpdate,
    FineCreate,
    FinePayment,
    FineUpdate,
    MemberCreate,
    MemberUpdate,
    PublisherCreate,
    PublisherUpdate,
    ReservationCreate,
    ReservationUpdate,
    StaffCreate,
    StaffUpdate,
)
from validators import (
    OPEN_FINE_STATUSES,
    ON_LOAN_STATUSES,
    BorrowStatus,
    FineStatus,
    ReservationStatus,
)

logger = logging.getLogger(__name__)

LOAN_PERIOD_DAYS = 14
MAX_RENEWALS = 5
TERMINAL_BORROW_STATUSES = (BorrowStatus.RETURNED.value, BorrowStatus.LOST.value)
CENT = Decimal("0.01")


@contextmanager
def _unit_of_work(db: Session, what: str):
    """Commit everything done inside the block, or roll all of it back.

    Store-level violations (check, unique, foreign key) come out as
    ``ValueError`` carrying the database's own message.
    """
    try:
        yield
        db.commit()
    except IntegrityError as e:
        db.rollback()
        msg = str(e.orig) if getattr(e, 'orig', None) else str(e)
        logger.warning("Rolled back %s: %s", what, msg)
        raise ValueError(msg) from e
    except Exception:
        db.rollback()
        raise


def _apply(obj, changes: dict) -> None:
    for key, value in changes.items():
        setattr(obj, key, value)


# --- Counter bookkeeping ---
# Atomic "col = col + n" statements, so two sessions racing for the last copy
# can't both win: the loser trips chk_copies / chk_fine_balance.

def _shift_available_copies(db: Session, book_id: int, delta: int) -> None:
    db.execute(
        update(Book)
        .where(Book.book_id == book_id)
        .values(available_copies=Book.available_copies + delta)
    )
    logger.info("book %s available_copies %+d", book_id, delta)


def _shift_total_copies(db: Session, book_id: int, delta: int) -> None:
    db.execute(
        update(Book)
        .where(Book.book_id == book_id)
        .values(total_copies=Book.total_copies + delta)
    )
    logger.info("book %s total_copies %+d", book_id, delta)


def _shift_fine_balance(db: Session, member_id: int, delta: Decimal) -> None:
    db.execute(
        update(Member)
        .where(Member.member_id == member_id)
        .values(fine_balance=Member.fine_balance + delta)
    )
    logger.info("member %s fine_balance %+.2f", member_id, delta)


# --- Author CRUD ---
def add_author(author_data: AuthorCreate, db: Session) -> Author:
    new_author = Author(**author_data.model_dump(exclude_none=True))
    with _unit_of_work(db, "author insert"):
        db.add(new_author)
    db.refresh(new_author)
    return new_author


def get_author_by_id(author_id: int, db: Session) -> Optional[Author]:
    return db.get(Author, author_id)


def get_authors(db: Session, skip: int = 0, limit: int = 100) -> List[Author]:
    return db.query(Author).order_by(Author.last_name, Author.first_name).offset(skip).limit(limit).all()


def update_author(author_id: int, author_data: AuthorUpdate, db: Session) -> Optional[Author]:
    author = db.get(Author, author_id)
    if not author:
        return None
    with _unit_of_work(db, "author update"):
        _apply(author, author_data.model_dump(exclude_unset=True))
    db.refresh(author)
    return author


def delete_author(author_id: int, db: Session) -> bool:
    author = db.get(Author, author_id)
    if not author:
        return False
    with _unit_of_work(db, "author delete"):
        db.delete(author)
    return True


# --- Publisher CRUD ---
def add_publisher(publisher_data: PublisherCreate, db: Session) -> Publisher:
    exists = db.query(Publisher).filter(Publisher.name == publisher_data.name).first()
    if exists:
        raise ValueError("A publisher with this name already exists.")
    new_publisher = Publisher(**publisher_data.model_dump(exclude_none=True))
    with _unit_of_work(db, "publisher insert"):
        db.add(new_publisher)
    db.refresh(new_publisher)
    return new_publisher


def get_publisher_by_id(publisher_id: int, db: Session) -> Optional[Publisher]:
    return db.get(Publisher, publisher_id)


def get_publishers(db: Session, skip: int = 0, limit: int = 100) -> List[Publisher]:
    return db.query(Publisher).order_by(Publisher.name).offset(skip).limit(limit).all()


def update_publisher(publisher_id: int, publisher_data: PublisherUpdate, db: Session) -> Optional[Publisher]:
    publisher = db.get(Publisher, publisher_id)
    if not publisher:
        return None
    with _unit_of_work(db, "publisher update"):
        _apply(publisher, publisher_data.model_dump(exclude_unset=True))
    db.refresh(publisher)
    return publisher


def delete_publisher(publisher_id: int, db: Session) -> bool:
    """Delete a publisher; its books stay in the catalog with no publisher."""
    publisher = db.get(Publisher, publisher_id)
    if not publisher:
        return False
    with _unit_of_work(db, "publisher delete"):
        db.delete(publisher)
    return True


# --- Category CRUD ---
def _would_create_cycle(category_id: int, new_parent_id: Optional[int], db: Session) -> bool:
    seen = set()
    current = new_parent_id
    while current is not None:
        if current == category_id or current in seen:
            return True
        seen.add(current)
        current = db.scalar(
            select(Category.parent_category_id).where(Category.category_id == current)
        )
    return False


def add_category(category_data: CategoryCreate, db: Session) -> Category:
    if db.query(Category).filter(Category.name == category_data.name).first():
        raise ValueError("A category with this name already exists.")
    parent_id = category_data.parent_category_id
    if parent_id is not None and db.get(Category, parent_id) is None:
        raise ValueError(f"Parent category {parent_id} does not exist.")
    new_category = Category(**category_data.model_dump(exclude_none=True))
    with _unit_of_work(db, "category insert"):
        db.add(new_category)
    db.refresh(new_category)
    return new_category


def get_category_by_id(category_id: int, db: Session) -> Optional[Category]:
    return db.get(Category, category_id)


def get_categories(db: Session, skip: int = 0, limit: int = 100) -> List[Category]:
    return db.query(Category).order_by(Category.name).offset(skip).limit(limit).all()


def list_subcategories(category_id: int, db: Session) -> List[Category]:
    return (
        db.query(Category)
        .filter(Category.parent_category_id == category_id)
        .order_by(Category.name)
        .all()
    )


def get_category_path(category_id: int, db: Session) -> List[str]:
    """Names from the root of the tree down to ``category_id``."""
    path = []
    seen = set()
    current = db.get(Category, category_id)
    while current is not None and current.category_id not in seen:
        seen.add(current.category_id)
        path.append(current.name)
        current = current.parent
    return list(reversed(path))


def update_category(category_id: int, category_data: CategoryUpdate, db: Session) -> Optional[Category]:
    category = db.get(Category, category_id)
    if not category:
        return None
    changes = category_data.model_dump(exclude_unset=True)
    new_parent = changes.get("parent_category_id")
    if new_parent is not None:
        if db.get(Category, new_parent) is None:
            raise ValueError(f"Parent category {new_parent} does not exist.")
        if _would_create_cycle(category_id, new_parent, db):
            raise ValueError("Category hierarchy cannot contain a cycle.")
    with _unit_of_work(db, "category update"):
        _apply(category, changes)
    db.refresh(category)
    return category


def delete_category(category_id: int, db: Session) -> bool:
    """Delete a category. Child categories become roots.

    Fails with ValueError while any book still belongs to the category.
    """
    category = db.get(Category, category_id)
    if not category:
        return False
    with _unit_of_work(db, "category delete"):
        db.delete(category)
    return True


# --- Book CRUD ---
def add_book(book_data: BookCreate, db: Session) -> Book:
    # Guard against duplicates before hitting DB constraints
    if book_data.isbn:
        exists = db.query(Book).filter(Book.isbn == book_data.isbn).first()
        if exists:
            raise ValueError("A book with this ISBN already exists.")

    fields = book_data.model_dump(exclude_none=True)
    fields.setdefault("available_copies", book_data.total_copies)
    new_book = Book(**fields)
    with _unit_of_work(db, "book insert"):
        db.add(new_book)
    db.refresh(new_book)
    return new_book


def get_book_by_id(book_id: int, db: Session) -> Optional[Book]:
    return db.get(Book, book_id)


def get_book_by_isbn(isbn: str, db: Session) -> Optional[Book]:
    return db.query(Book).filter(Book.isbn == isbn).first()


def get_books(db: Session, skip: int = 0, limit: int = 100) -> List[Book]:
    return db.query(Book).order_by(Book.book_id).offset(skip).limit(limit).all()


def update_book(book_id: int, book_data: BookUpdate, db: Session) -> Optional[Book]:
    book = db.get(Book, book_id)
    if not book:
        return None
    # If changing identifiers, ensure uniqueness
    if book_data.isbn and book_data.isbn != book.isbn:
        exists = db.query(Book).filter(Book.isbn == book_data.isbn).first()
        if exists:
            raise ValueError("A book with this ISBN already exists.")
    with _unit_of_work(db, "book update"):
        _apply(book, book_data.model_dump(exclude_unset=True))
    db.refresh(book)
    return book


def add_copies(book_id: int, count: int, db: Session) -> Optional[Book]:
    """Accession ``count`` new copies: both counters grow together."""
    if count <= 0:
        raise ValueError("Number of copies to add must be positive.")
    book = db.get(Book, book_id)
    if not book:
        return None
    with _unit_of_work(db, "copy accession"):
        _shift_total_copies(db, book_id, count)
        _shift_available_copies(db, book_id, count)
    db.refresh(book)
    return book


def delete_book(book_id: int, db: Session) -> bool:
    book = db.get(Book, book_id)
    if not book:
        return False
    with _unit_of_work(db, "book delete"):
        db.delete(book)
    return True


def search_books(
    db: Session,
    text: Optional[str] = None,
    title: Optional[str] = None,
    author: Optional[str] = None,
    isbn: Optional[str] = None,
    category_id: Optional[int] = None,
    published_after: Optional[int] = None,
    published_before: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Book]:
    """Search the catalog.

    ``text`` runs against title, subtitle and description: a full-text match
    on PostgreSQL (served by ``idx_book_search``), a substring match elsewhere.
    ``author`` matches first, last or full author name.
    """
    query = db.query(Book)
    if text:
        if db.get_bind().dialect.name == "postgresql":
            tsquery = func.plainto_tsquery(literal_column("'english'::regconfig"), text)
            query = query.filter(literal_column(BOOK_SEARCH_VECTOR).op("@@")(tsquery))
        else:
            like = f"%{text}%"
            query = query.filter(
                or_(Book.title.ilike(like), Book.subtitle.ilike(like), Book.description.ilike(like))
            )
    if title:
        query = query.filter(Book.title.ilike(f"%{title}%"))
    if author:
        like = f"%{author}%"
        query = query.filter(
            Book.author_links.any(
                BookAuthor.author.has(
                    or_(
                        Author.first_name.ilike(like),
                        Author.last_name.ilike(like),
                        (Author.first_name + " " + Author.last_name).ilike(like),
                    )
                )
            )
        )
    if isbn:
        query = query.filter(Book.isbn.ilike(f"%{isbn}%"))
    if category_id is not None:
        query = query.filter(Book.category_id == category_id)
    if published_after is not None:
        query = query.filter(Book.publication_year >= published_after)
    if published_before is not None:
        query = query.filter(Book.publication_year <= published_before)
    return query.order_by(Book.title).offset(skip).limit(limit).all()


# --- Book <-> Author links ---
def add_book_author(link: BookAuthorLink, db: Session) -> BookAuthor:
    new_link = BookAuthor(**link.model_dump())
    with _unit_of_work(db, "book author link"):
        db.add(new_link)
    db.refresh(new_link)
    return new_link


def remove_book_author(book_id: int, author_id: int, db: Session) -> bool:
    link = db.get(BookAuthor, (book_id, author_id))
    if not link:
        return False
    with _unit_of_work(db, "book author unlink"):
        db.delete(link)
    return True


def list_authors_for_book(book_id: int, db: Session) -> List[Author]:
    return (
        db.query(Author)
        .join(BookAuthor, BookAuthor.author_id == Author.author_id)
        .filter(BookAuthor.book_id == book_id)
        .order_by(BookAuthor.author_order, Author.last_name)
        .all()
    )


def list_books_for_author(author_id: int, db: Session) -> List[Book]:
    return (
        db.query(Book)
        .join(BookAuthor, BookAuthor.book_id == Book.book_id)
        .filter(BookAuthor.author_id == author_id)
        .order_by(Book.title)
        .all()
    )


# --- Member CRUD ---
def add_member(member_data: MemberCreate, db: Session) -> Member:
    if db.query(Member).filter(Member.membership_number == member_data.membership_number).first():
        raise ValueError("A member with this membership number already exists.")
    if member_data.email and db.query(Member).filter(Member.email == member_data.email).first():
        raise ValueError("A member with this email already exists.")
    new_member = Member(**member_data.model_dump(exclude_none=True))
    with _unit_of_work(db, "member insert"):
        db.add(new_member)
    db.refresh(new_member)
    return new_member


def get_members(db: Session, skip: int = 0, limit: int = 100) -> List[Member]:
    return db.query(Member).order_by(Member.member_id).offset(skip).limit(limit).all()


def get_member_by_id(member_id: int, db: Session) -> Optional[Member]:
    return db.get(Member, member_id)


def get_member_by_number(membership_number: str, db: Session) -> Optional[Member]:
    return db.query(Member).filter(Member.membership_number == membership_number).first()


def update_member(member_id: int, member_data: MemberUpdate, db: Session) -> Optional[Member]:
    member = db.get(Member, member_id)
    if not member:
        return None
    with _unit_of_work(db, "member update"):
        _apply(member, member_data.model_dump(exclude_unset=True))
    db.refresh(member)
    return member


def delete_member(member_id: int, db: Session) -> bool:
    """Delete a member along with their borrowing records, reservations and fines."""
    member = db.get(Member, member_id)
    if not member:
        return False
    with _unit_of_work(db, "member delete"):
        db.delete(member)
    return True


# --- Staff CRUD ---
def add_staff(staff_data: StaffCreate, db: Session) -> Staff:
    if db.query(Staff).filter(Staff.employee_id == staff_data.employee_id).first():
        raise ValueError("A staff member with this employee id already exists.")
    new_staff = Staff(**staff_data.model_dump(exclude_none=True))
    with _unit_of_work(db, "staff insert"):
        db.add(new_staff)
    db.refresh(new_staff)
    return new_staff


def get_staff(db: Session, skip: int = 0, limit: int = 100) -> List[Staff]:
    return db.query(Staff).order_by(Staff.staff_id).offset(skip).limit(limit).all()


def get_staff_by_id(staff_id: int, db: Session) -> Optional[Staff]:
    return db.get(Staff, staff_id)


def update_staff(staff_id: int, staff_data: StaffUpdate, db: Session) -> Optional[Staff]:
    staff = db.get(Staff, staff_id)
    if not staff:
        return None
    with _unit_of_work(db, "staff update"):
        _apply(staff, staff_data.model_dump(exclude_unset=True))
    db.refresh(staff)
    return staff


def delete_staff(staff_id: int, db: Session) -> bool:
    """Delete a staff member; records they processed keep no staff reference."""
    staff = db.get(Staff, staff_id)
    if not staff:
        return False
    with _unit_of_work(db, "staff delete"):
        db.delete(staff)
    return True


# --- Borrowing ---
def add_borrowing(borrowing_data: BorrowingCreate, db: Session) -> BorrowingRecord:
    """Record a loan. A record that starts on loan takes one copy off the shelf.

    Raises ValueError when the book has no available copy; the chk_copies
    constraint rejects the write if another session took the copy first.
    """
    record = BorrowingRecord(**borrowing_data.model_dump(exclude_none=True))
    with _unit_of_work(db, "borrowing insert"):
        if record.status in ON_LOAN_STATUSES:
            book = db.get(Book, record.book_id)
            if book is None:
                raise ValueError(f"Book {record.book_id} does not exist.")
            if book.available_copies <= 0:
                raise ValueError(f"No copies of book {record.book_id} are available.")
            _shift_available_copies(db, record.book_id, -1)
        db.add(record)
    db.refresh(record)
    return record


def borrow_book(
    member_id: int,
    book_id: int,
    db: Session,
    staff_id: Optional[int] = None,
    days: int = LOAN_PERIOD_DAYS,
) -> BorrowingRecord:
    today = date.today()
    return add_borrowing(
        BorrowingCreate(
            member_id=member_id,
            book_id=book_id,
            staff_id=staff_id,
            borrow_date=today,
            due_date=today + timedelta(days=days),
        ),
        db,
    )


def get_borrowing_by_id(borrowing_id: int, db: Session) -> Optional[BorrowingRecord]:
    return db.get(BorrowingRecord, borrowing_id)


def list_borrowings(db: Session, skip: int = 0, limit: int = 100) -> List[BorrowingRecord]:
    return db.query(BorrowingRecord).order_by(BorrowingRecord.borrowing_id).offset(skip).limit(limit).all()


def list_borrowings_for_member(member_id: int, db: Session, skip: int = 0, limit: int = 100) -> List[BorrowingRecord]:
    """Return borrowing records belonging to a specific member."""
    return (
        db.query(BorrowingRecord)
        .filter(BorrowingRecord.member_id == member_id)
        .order_by(BorrowingRecord.borrow_date.desc(), BorrowingRecord.borrowing_id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def list_overdue_borrowings(db: Session, today: Optional[date] = None) -> List[BorrowingRecord]:
    today = today or date.today()
    return (
        db.query(BorrowingRecord)
        .filter(BorrowingRecord.status.in_(ON_LOAN_STATUSES), BorrowingRecord.due_date < today)
        .order_by(BorrowingRecord.due_date)
        .all()
    )


def mark_overdue_borrowings(db: Session, today: Optional[date] = None) -> int:
    """Flag Borrowed records past their due date as Overdue. Counters don't move."""
    today = today or date.today()
    with _unit_of_work(db, "overdue sweep"):
        result = db.execute(
            update(BorrowingRecord)
            .where(
                BorrowingRecord.status == BorrowStatus.BORROWED.value,
                BorrowingRecord.due_date < today,
            )
            .values(status=BorrowStatus.OVERDUE.value)
            .execution_options(synchronize_session=False)
        )
    logger.info("Marked %d borrowing records overdue", result.rowcount)
    return result.rowcount


def update_borrowing(borrowing_id: int, borrowing_data: BorrowingUpdate, db: Session) -> Optional[BorrowingRecord]:
    """Apply changes to a borrowing record and move the book's counters with it.

    - on loan -> Returned: one more copy available
    - on loan -> Lost: one copy fewer in total; ``available_copies`` already
      excluded it
    - Returned and Lost are final; re-applying the same status changes nothing
    """
    record = db.get(BorrowingRecord, borrowing_id)
    if not record:
        return None
    changes = borrowing_data.model_dump(exclude_unset=True)
    old_status = record.status
    new_status = changes.get("status", old_status)

    with _unit_of_work(db, "borrowing update"):
        if new_status != old_status:
            if old_status in TERMINAL_BORROW_STATUSES:
                raise ValueError(
                    f"Borrowing record {borrowing_id} is already {old_status} and cannot become {new_status}."
                )
            if old_status in ON_LOAN_STATUSES and new_status == BorrowStatus.RETURNED.value:
                _shift_available_copies(db, record.book_id, 1)
                if changes.get("return_date") is None:
                    changes["return_date"] = date.today()
            elif old_status in ON_LOAN_STATUSES and new_status == BorrowStatus.LOST.value:
                _shift_total_copies(db, record.book_id, -1)
        _apply(record, changes)
    db.refresh(record)
    return record


def return_book(borrowing_id: int, db: Session, return_date: Optional[date] = None) -> Optional[BorrowingRecord]:
    return update_borrowing(
        borrowing_id,
        BorrowingUpdate(status=BorrowStatus.RETURNED, return_date=return_date),
        db,
    )


def mark_lost(borrowing_id: int, db: Session) -> Optional[BorrowingRecord]:
    return update_borrowing(borrowing_id, BorrowingUpdate(status=BorrowStatus.LOST), db)


def renew_borrowing(borrowing_id: int, db: Session, days: int = LOAN_PERIOD_DAYS) -> Optional[BorrowingRecord]:
    record = db.get(BorrowingRecord, borrowing_id)
    if not record:
        return None
    if record.status not in ON_LOAN_STATUSES:
        raise ValueError(f"Borrowing record {borrowing_id} is {record.status} and cannot be renewed.")
    if record.renewal_count >= MAX_RENEWALS:
        raise ValueError(f"Borrowing record {borrowing_id} has reached the renewal limit.")
    return update_borrowing(
        borrowing_id,
        BorrowingUpdate(
            renewal_count=record.renewal_count + 1,
            due_date=max(record.due_date, date.today()) + timedelta(days=days),
            status=BorrowStatus.BORROWED,
        ),
        db,
    )


def delete_borrowing(borrowing_id: int, db: Session) -> bool:
    record = db.get(BorrowingRecord, borrowing_id)
    if not record:
        return False
    with _unit_of_work(db, "borrowing delete"):
        db.delete(record)
    return True


def find_inconsistent_books(db: Session) -> List[dict]:
    """Books whose ``available_copies`` differs from total minus copies on loan."""
    on_loan = (
        select(BorrowingRecord.book_id, func.count().label("on_loan"))
        .where(BorrowingRecord.status.in_(ON_LOAN_STATUSES))
        .group_by(BorrowingRecord.book_id)
        .subquery()
    )
    expected = Book.total_copies - func.coalesce(on_loan.c.on_loan, 0)
    rows = (
        db.query(Book, expected.label("expected"))
        .outerjoin(on_loan, on_loan.c.book_id == Book.book_id)
        .filter(Book.available_copies != expected)
        .order_by(Book.book_id)
        .all()
    )
    return [
        {
            "book_id": book.book_id,
            "title": book.title,
            "total_copies": book.total_copies,
            "available_copies": book.available_copies,
            "expected_available": int(exp),
        }
        for book, exp in rows
    ]


def recalculate_available_copies(book_id: int, db: Session) -> Optional[Book]:
    book = db.get(Book, book_id)
    if not book:
        return None
    on_loan = db.scalar(
        select(func.count())
        .select_from(BorrowingRecord)
        .where(BorrowingRecord.book_id == book_id, BorrowingRecord.status.in_(ON_LOAN_STATUSES))
    )
    with _unit_of_work(db, "copy recount"):
        book.available_copies = book.total_copies - on_loan
    db.refresh(book)
    return book


# --- Reservation CRUD ---
def add_reservation(resv_data: ReservationCreate, db: Session) -> Reservation:
    new_resv = Reservation(**resv_data.model_dump(exclude_none=True))
    with _unit_of_work(db, "reservation insert"):
        db.add(new_resv)
    db.refresh(new_resv)
    return new_resv


def get_reservation_by_id(resv_id: int, db: Session) -> Optional[Reservation]:
    return db.get(Reservation, resv_id)


def list_reservations(db: Session, skip: int = 0, limit: int = 100) -> List[Reservation]:
    return db.query(Reservation).order_by(Reservation.reservation_id).offset(skip).limit(limit).all()


def list_reservations_for_member(member_id: int, db: Session, skip: int = 0, limit: int = 100) -> List[Reservation]:
    """Return reservations belonging to a specific member."""
    return (
        db.query(Reservation)
        .filter(Reservation.member_id == member_id)
        .order_by(Reservation.reservation_id)
        .offset(skip)
        .limit(limit)
        .all()
    )


def list_active_reservations_for_book(book_id: int, db: Session) -> List[Reservation]:
    # oldest first: that's the queue order
    return (
        db.query(Reservation)
        .filter(Reservation.book_id == book_id, Reservation.status == ReservationStatus.ACTIVE.value)
        .order_by(Reservation.reservation_date, Reservation.reservation_id)
        .all()
    )


def update_reservation(resv_id: int, resv_data: ReservationUpdate, db: Session) -> Optional[Reservation]:
    resv = db.get(Reservation, resv_id)
    if not resv:
        return None
    with _unit_of_work(db, "reservation update"):
        _apply(resv, resv_data.model_dump(exclude_unset=True))
    db.refresh(resv)
    return resv


def update_reservation_status(resv_id: int, status: ReservationStatus, db: Session) -> Optional[Reservation]:
    return update_reservation(resv_id, ReservationUpdate(status=status), db)


def delete_reservation(resv_id: int, db: Session) -> bool:
    resv = db.get(Reservation, resv_id)
    if not resv:
        return False
    with _unit_of_work(db, "reservation delete"):
        db.delete(resv)
    return True


# --- Fines ---
def add_fine(fine_data: FineCreate, db: Session) -> Fine:
    """Assess a fine and add its amount to the member's fine balance."""
    new_fine = Fine(**fine_data.model_dump(exclude_none=True))
    with _unit_of_work(db, "fine insert"):
        if db.get(Member, new_fine.member_id) is None:
            raise ValueError(f"Member {new_fine.member_id} does not exist.")
        _shift_fine_balance(db, new_fine.member_id, Decimal(new_fine.amount))
        db.add(new_fine)
    db.refresh(new_fine)
    return new_fine


def get_fine_by_id(fine_id: int, db: Session) -> Optional[Fine]:
    return db.get(Fine, fine_id)


def list_fines(db: Session, skip: int = 0, limit: int = 100) -> List[Fine]:
    return db.query(Fine).order_by(Fine.fine_id).offset(skip).limit(limit).all()


def list_fines_for_member(member_id: int, db: Session, skip: int = 0, limit: int = 100) -> List[Fine]:
    """Return fines belonging to a specific member."""
    return (
        db.query(Fine)
        .filter(Fine.member_id == member_id)
        .order_by(Fine.fine_date, Fine.fine_id)
        .offset(skip)
        .limit(limit)
        .all()
    )


def update_fine(fine_id: int, fine_data: FineUpdate, db: Session) -> Optional[Fine]:
    f = db.get(Fine, fine_id)
    if not f:
        return None
    with _unit_of_work(db, "fine update"):
        _apply(f, fine_data.model_dump(exclude_unset=True))
    db.refresh(f)
    return f


def pay_fine(fine_id: int, payment: FinePayment, db: Session) -> Optional[Fine]:
    """Record a payment against a fine and take it off the member's balance.

    A payment that clears the fine marks it Paid (stamping ``paid_date``);
    anything less leaves it Partial.
    """
    f = db.get(Fine, fine_id)
    if not f:
        return None
    amount = Decimal(payment.amount).quantize(CENT)
    if f.status not in OPEN_FINE_STATUSES:
        raise ValueError(f"Fine {fine_id} is {f.status}; nothing to pay.")
    if amount <= 0:
        raise ValueError("Payment amount must be positive.")
    outstanding = f.outstanding
    if amount > outstanding:
        raise ValueError(f"Payment of {amount} exceeds the outstanding {outstanding} on fine {fine_id}.")

    with _unit_of_work(db, "fine payment"):
        _shift_fine_balance(db, f.member_id, -amount)
        f.amount_paid = Decimal(f.amount_paid or 0) + amount
        if amount == outstanding:
            f.status = FineStatus.PAID.value
            f.paid_date = payment.paid_date or date.today()
        else:
            f.status = FineStatus.PARTIAL.value
    db.refresh(f)
    return f


def waive_fine(fine_id: int, db: Session) -> Optional[Fine]:
    """Forgive whatever is still owed on a fine."""
    f = db.get(Fine, fine_id)
    if not f:
        return None
    if f.status not in OPEN_FINE_STATUSES:
        raise ValueError(f"Fine {fine_id} is {f.status} and cannot be waived.")
    with _unit_of_work(db, "fine waiver"):
        _shift_fine_balance(db, f.member_id, -f.outstanding)
        f.status = FineStatus.WAIVED.value
    db.refresh(f)
    return f


def delete_fine(fine_id: int, db: Session) -> bool:
    f = db.get(Fine, fine_id)
    if not f:
        return False
    with _unit_of_work(db, "fine delete"):
        if f.status in OPEN_FINE_STATUSES:
            _shift_fine_balance(db, f.member_id, -f.outstanding)
        db.delete(f)
    return True


def recalculate_fine_balance(member_id: int, db: Session) -> Optional[Decimal]:
    """Rebuild a member's fine balance from their open fines."""
    member = db.get(Member, member_id)
    if not member:
        return None
    owed = db.scalar(
        select(func.coalesce(func.sum(Fine.amount - Fine.amount_paid), 0))
        .where(Fine.member_id == member_id, Fine.status.in_(OPEN_FINE_STATUSES))
    )
    owed = Decimal(str(owed)).quantize(CENT)
    with _unit_of_work(db, "fine balance recount"):
        member.fine_balance = owed
    return owed
