import pytest

import crud
from database import init_db, make_engine, make_session_factory
from schemas import BookCreate, CategoryCreate, MemberCreate


@pytest.fixture
def engine(tmp_path):
    # a fresh SQLite file per test
    eng = make_engine(f"sqlite:///{tmp_path / 'library.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = make_session_factory(engine)()
    yield session
    session.close()


@pytest.fixture
def category(db):
    return crud.add_category(CategoryCreate(name="Fiction", description="Literary works of imagination"), db)


@pytest.fixture
def book(db, category):
    return crud.add_book(
        BookCreate(
            isbn="978-0-553-29337-0",
            title="Foundation",
            publication_year=1951,
            pages=244,
            category_id=category.category_id,
            total_copies=2,
        ),
        db,
    )


@pytest.fixture
def member(db):
    return crud.add_member(
        MemberCreate(membership_number="MEM001", first_name="John", last_name="Doe", email="john.doe@email.com"),
        db,
    )
