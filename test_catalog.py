from datetime import date, timedelta
from decimal import Decimal

import pytest

import crud
from models import BookAuthor, BorrowingRecord, Fine, Reservation
from schemas import (
    AuthorCreate,
    AuthorUpdate,
    BookAuthorLink,
    BookCreate,
    BookUpdate,
    BorrowingCreate,
    CategoryCreate,
    CategoryUpdate,
    FineCreate,
    MemberUpdate,
    PublisherCreate,
    PublisherUpdate,
    ReservationCreate,
)

TODAY = date.today()


@pytest.fixture
def tree(db):
    fiction = crud.add_category(CategoryCreate(name="Fiction"), db)
    non_fiction = crud.add_category(CategoryCreate(name="Non-Fiction"), db)
    science = crud.add_category(CategoryCreate(name="Science", parent_category_id=non_fiction.category_id), db)
    cs = crud.add_category(CategoryCreate(name="Computer Science", parent_category_id=science.category_id), db)
    return fiction, non_fiction, science, cs


def test_category_path_and_children(db, tree):
    fiction, non_fiction, science, cs = tree
    assert crud.get_category_path(cs.category_id, db) == ["Non-Fiction", "Science", "Computer Science"]
    assert crud.get_category_path(fiction.category_id, db) == ["Fiction"]
    assert [c.name for c in crud.list_subcategories(non_fiction.category_id, db)] == ["Science"]
    assert crud.get_category_path(999, db) == []


def test_category_name_unique(db, tree):
    with pytest.raises(ValueError, match="already exists"):
        crud.add_category(CategoryCreate(name="Science"), db)


def test_category_missing_parent(db):
    with pytest.raises(ValueError, match="does not exist"):
        crud.add_category(CategoryCreate(name="Orphan", parent_category_id=42), db)


def test_category_cycle_refused(db, tree):
    _, non_fiction, science, cs = tree
    with pytest.raises(ValueError, match="cycle"):
        crud.update_category(non_fiction.category_id, CategoryUpdate(parent_category_id=cs.category_id), db)
    with pytest.raises(ValueError, match="cycle"):
        crud.update_category(science.category_id, CategoryUpdate(parent_category_id=science.category_id), db)
    db.expire_all()
    assert crud.get_category_by_id(non_fiction.category_id, db).parent_category_id is None


def test_category_move(db, tree):
    fiction, _, science, cs = tree
    moved = crud.update_category(cs.category_id, CategoryUpdate(parent_category_id=fiction.category_id), db)
    assert moved.parent_category_id == fiction.category_id
    assert crud.get_category_path(cs.category_id, db) == ["Fiction", "Computer Science"]


def test_category_with_books_cannot_be_deleted(db, tree):
    *_, cs = tree
    crud.add_book(BookCreate(title="TAOCP", category_id=cs.category_id), db)
    with pytest.raises(ValueError):
        crud.delete_category(cs.category_id, db)
    assert crud.get_category_by_id(cs.category_id, db) is not None


def test_deleting_parent_category_orphans_children(db, tree):
    _, non_fiction, science, cs = tree
    assert crud.delete_category(science.category_id, db) is True
    db.expire_all()
    assert crud.get_category_by_id(cs.category_id, db).parent_category_id is None
    assert crud.get_category_by_id(non_fiction.category_id, db) is not None
    assert crud.delete_category(science.category_id, db) is False


def test_publisher_delete_keeps_books(db, category):
    pub = crud.add_publisher(PublisherCreate(name="MIT Press", city="Cambridge", email="mitpress@mit.edu"), db)
    b = crud.add_book(BookCreate(title="SICP", category_id=category.category_id, publisher_id=pub.publisher_id), db)
    with pytest.raises(ValueError, match="already exists"):
        crud.add_publisher(PublisherCreate(name="MIT Press"), db)
    assert crud.delete_publisher(pub.publisher_id, db) is True
    db.expire_all()
    assert crud.get_book_by_id(b.book_id, db).publisher_id is None


def test_publisher_update(db):
    pub = crud.add_publisher(PublisherCreate(name="HarperCollins"), db)
    updated = crud.update_publisher(pub.publisher_id, PublisherUpdate(country="USA"), db)
    assert updated.country == "USA"
    assert updated.name == "HarperCollins"
    assert crud.update_publisher(999, PublisherUpdate(country="UK"), db) is None


def test_book_authors_in_order(db, book):
    first = crud.add_author(AuthorCreate(first_name="Isaac", last_name="Asimov", nationality="American"), db)
    second = crud.add_author(AuthorCreate(first_name="Robert", last_name="Silverberg"), db)
    crud.add_book_author(BookAuthorLink(book_id=book.book_id, author_id=second.author_id, author_order=2), db)
    crud.add_book_author(BookAuthorLink(book_id=book.book_id, author_id=first.author_id, author_order=1), db)

    assert [a.last_name for a in crud.list_authors_for_book(book.book_id, db)] == ["Asimov", "Silverberg"]
    db.expire_all()
    assert [a.last_name for a in crud.get_book_by_id(book.book_id, db).authors] == ["Asimov", "Silverberg"]
    assert [b.title for b in crud.list_books_for_author(second.author_id, db)] == ["Foundation"]

    assert crud.remove_book_author(book.book_id, second.author_id, db) is True
    assert crud.remove_book_author(book.book_id, second.author_id, db) is False
    assert [a.last_name for a in crud.list_authors_for_book(book.book_id, db)] == ["Asimov"]


def test_author_delete_removes_links(db, book):
    author = crud.add_author(AuthorCreate(first_name="Isaac", last_name="Asimov"), db)
    crud.add_book_author(BookAuthorLink(book_id=book.book_id, author_id=author.author_id), db)
    assert crud.delete_author(author.author_id, db) is True
    assert db.query(BookAuthor).count() == 0
    assert crud.get_book_by_id(book.book_id, db) is not None


def test_author_update(db):
    author = crud.add_author(AuthorCreate(first_name="Agatha", last_name="Christie"), db)
    updated = crud.update_author(author.author_id, AuthorUpdate(nationality="British"), db)
    assert updated.nationality == "British"
    assert updated.full_name == "Agatha Christie"


def test_book_update_leaves_counters(db, book):
    updated = crud.update_book(book.book_id, BookUpdate(subtitle="Book one", shelf_location="F-12"), db)
    assert updated.subtitle == "Book one"
    assert updated.total_copies == 2
    assert updated.available_copies == 2
    assert crud.update_book(999, BookUpdate(subtitle="x"), db) is None


def test_book_delete_cascades(db, book, member):
    author = crud.add_author(AuthorCreate(first_name="Isaac", last_name="Asimov"), db)
    crud.add_book_author(BookAuthorLink(book_id=book.book_id, author_id=author.author_id), db)
    record = crud.borrow_book(member.member_id, book.book_id, db)
    crud.add_reservation(
        ReservationCreate(member_id=member.member_id, book_id=book.book_id, expiry_date=TODAY + timedelta(days=7)), db
    )
    crud.add_fine(FineCreate(member_id=member.member_id, borrowing_id=record.borrowing_id,
                             fine_type="Damage", amount=Decimal("2.00")), db)

    assert crud.delete_book(book.book_id, db) is True
    assert db.query(BookAuthor).count() == 0
    assert db.query(BorrowingRecord).count() == 0
    assert db.query(Reservation).count() == 0
    # the fine stays with the member, detached from the deleted loan
    fine = db.query(Fine).one()
    assert fine.borrowing_id is None
    assert crud.get_author_by_id(author.author_id, db) is not None


def test_member_delete_cascades(db, book, member):
    record = crud.add_borrowing(
        BorrowingCreate(member_id=member.member_id, book_id=book.book_id, due_date=TODAY + timedelta(days=14)), db
    )
    crud.add_reservation(
        ReservationCreate(member_id=member.member_id, book_id=book.book_id, expiry_date=TODAY + timedelta(days=7)), db
    )
    crud.add_fine(FineCreate(member_id=member.member_id, borrowing_id=record.borrowing_id,
                             fine_type="Overdue", amount=Decimal("1.00")), db)

    assert crud.delete_member(member.member_id, db) is True
    assert db.query(BorrowingRecord).count() == 0
    assert db.query(Reservation).count() == 0
    assert db.query(Fine).count() == 0
    assert crud.get_book_by_id(book.book_id, db) is not None
    assert crud.delete_member(member.member_id, db) is False


def test_member_update_and_lookup(db, member):
    updated = crud.update_member(member.member_id, MemberUpdate(membership_type="Faculty", city="Boston"), db)
    assert updated.membership_type == "Faculty"
    assert updated.city == "Boston"
    assert crud.get_member_by_number("MEM001", db).member_id == member.member_id
    assert crud.get_member_by_number("MEM404", db) is None


@pytest.fixture
def catalog(db, tree):
    fiction, *_, cs = tree
    asimov = crud.add_author(AuthorCreate(first_name="Isaac", last_name="Asimov"), db)
    knuth = crud.add_author(AuthorCreate(first_name="Donald", last_name="Knuth"), db)
    foundation = crud.add_book(
        BookCreate(isbn="978-0-553-29337-0", title="Foundation", publication_year=1951, category_id=fiction.category_id,
                   description="The fall of the Galactic Empire"),
        db,
    )
    taocp = crud.add_book(
        BookCreate(isbn="978-0-201-89683-1", title="The Art of Computer Programming Vol 1", publication_year=1968,
                   subtitle="Fundamental Algorithms", category_id=cs.category_id),
        db,
    )
    crud.add_book_author(BookAuthorLink(book_id=foundation.book_id, author_id=asimov.author_id), db)
    crud.add_book_author(BookAuthorLink(book_id=taocp.book_id, author_id=knuth.author_id), db)
    return foundation, taocp


def _titles(books):
    return [b.title for b in books]


def test_search_text(db, catalog):
    assert _titles(crud.search_books(db, text="galactic")) == ["Foundation"]
    assert _titles(crud.search_books(db, text="algorithms")) == ["The Art of Computer Programming Vol 1"]
    assert crud.search_books(db, text="dragons") == []


def test_search_by_author(db, catalog):
    assert _titles(crud.search_books(db, author="asimov")) == ["Foundation"]
    assert _titles(crud.search_books(db, author="Donald Knuth")) == ["The Art of Computer Programming Vol 1"]


def test_search_filters(db, catalog):
    foundation, taocp = catalog
    assert _titles(crud.search_books(db, published_after=1960)) == [taocp.title]
    assert _titles(crud.search_books(db, published_before=1960)) == [foundation.title]
    assert _titles(crud.search_books(db, category_id=taocp.category_id)) == [taocp.title]
    assert _titles(crud.search_books(db, isbn="89683")) == [taocp.title]
    assert _titles(crud.search_books(db, title="art of")) == [taocp.title]
    assert len(crud.search_books(db)) == 2


def test_category_back_to_root(db, tree):
    *_, cs = tree
    moved = crud.update_category(cs.category_id, CategoryUpdate(parent_category_id=None), db)
    assert moved.parent_category_id is None
    assert crud.get_category_path(cs.category_id, db) == ["Computer Science"]
    assert moved.name == "Computer Science"


def test_update_clears_nullable_columns(db, category, member):
    pub = crud.add_publisher(PublisherCreate(name="MIT Press"), db)
    b = crud.add_book(BookCreate(title="SICP", category_id=category.category_id, publisher_id=pub.publisher_id), db)
    b = crud.update_book(b.book_id, BookUpdate(publisher_id=None), db)
    assert b.publisher_id is None
    assert b.title == "SICP"

    crud.update_member(member.member_id, MemberUpdate(membership_end_date=date(2030, 1, 1)), db)
    m = crud.update_member(member.member_id, MemberUpdate(membership_end_date=None), db)
    assert m.membership_end_date is None
    assert m.email == "john.doe@email.com"
