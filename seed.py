"""
Load the sample catalog: categories, publishers, authors, books, members
and staff.

Usage:
    python seed.py

Does nothing if the database already holds categories.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

import models
from database import SessionLocal, init_db

# (name, description, parent name)
CATEGORIES = [
    ("Fiction", "Literary works of imagination", None),
    ("Non-Fiction", "Factual and informational books", None),
    ("Science", "Scientific literature and research", "Non-Fiction"),
    ("History", "Historical accounts and biographies", "Non-Fiction"),
    ("Mystery", "Mystery and detective fiction", "Fiction"),
    ("Romance", "Romantic fiction", "Fiction"),
    ("Computer Science", "Computing and programming books", "Science"),
]

PUBLISHERS = [
    dict(name="Penguin Random House", city="New York", country="USA",
         established_year=1927, email="info@penguinrandomhouse.com"),
    dict(name="HarperCollins", city="New York", country="USA",
         established_year=1989, email="contact@harpercollins.com"),
    dict(name="Oxford University Press", city="Oxford", country="UK",
         established_year=1586, email="info@oup.com"),
    dict(name="MIT Press", city="Cambridge", country="USA",
         established_year=1962, email="mitpress@mit.edu"),
]

AUTHORS = [
    ("Agatha", "Christie", date(1890, 9, 15), "British"),
    ("Jane", "Austen", date(1775, 12, 16), "British"),
    ("Stephen", "King", date(1947, 9, 21), "American"),
    ("Donald", "Knuth", date(1938, 1, 10), "American"),
    ("Isaac", "Asimov", date(1920, 1, 2), "American"),
]

# (isbn, title, year, pages, publisher, category, copies, author last name)
BOOKS = [
    ("978-0-06-112008-4", "Murder on the Orient Express", 1934, 256,
     "HarperCollins", "Mystery", 3, "Christie"),
    ("978-0-14-143951-8", "Pride and Prejudice", 1813, 432,
     "Penguin Random House", "Romance", 2, "Austen"),
    ("978-0-385-12167-5", "The Shining", 1977, 659,
     "Penguin Random House", "Fiction", 4, "King"),
    ("978-0-201-89683-1", "The Art of Computer Programming Vol 1", 1968, 672,
     "MIT Press", "Computer Science", 2, "Knuth"),
    ("978-0-553-29337-0", "Foundation", 1951, 244,
     "Penguin Random House", "Fiction", 3, "Asimov"),
]

MEMBERS = [
    ("MEM001", "John", "Doe", "john.doe@email.com", "Public", date(2025, 1, 15)),
    ("MEM002", "Sarah", "Johnson", "sarah.j@university.edu", "Student", date(2025, 2, 1)),
    ("MEM003", "Michael", "Brown", "mbrown@university.edu", "Faculty", date(2025, 1, 10)),
    ("MEM004", "Emily", "Davis", "emily.davis@email.com", "Public", date(2025, 3, 1)),
]

STAFF = [
    ("EMP001", "Alice", "Wilson", "Head Librarian", "alice.wilson@library.edu",
     date(2020, 8, 15), Decimal("65000.00")),
    ("EMP002", "Bob", "Martinez", "Assistant Librarian", "bob.martinez@library.edu",
     date(2022, 1, 10), Decimal("45000.00")),
    ("EMP003", "Carol", "Thompson", "Library Assistant", "carol.thompson@library.edu",
     date(2023, 6, 1), Decimal("35000.00")),
]


def seed_db(db: Session) -> bool:
    """Insert the sample rows in one transaction. Returns False if already seeded."""
    if db.query(models.Category).first():
        print("Database already has categories, skipping seed.")
        return False

    try:
        print("Seeding categories...")
        categories = {}
        for name, description, parent in CATEGORIES:
            cat = models.Category(name=name, description=description, parent=categories.get(parent))
            db.add(cat)
            categories[name] = cat

        print("Seeding publishers...")
        publishers = {}
        for fields in PUBLISHERS:
            pub = models.Publisher(**fields)
            db.add(pub)
            publishers[pub.name] = pub

        print("Seeding authors...")
        authors = {}
        for first, last, born, nationality in AUTHORS:
            author = models.Author(first_name=first, last_name=last, birth_date=born, nationality=nationality)
            db.add(author)
            authors[last] = author

        print("Seeding books...")
        for isbn, title, year, pages, publisher, category, copies, author in BOOKS:
            book = models.Book(
                isbn=isbn,
                title=title,
                publication_year=year,
                pages=pages,
                publisher=publishers[publisher],
                category=categories[category],
                total_copies=copies,
                available_copies=copies,
            )
            book.author_links.append(models.BookAuthor(author=authors[author], author_order=1))
            db.add(book)

        print("Seeding members...")
        for number, first, last, email, mtype, start in MEMBERS:
            db.add(models.Member(
                membership_number=number,
                first_name=first,
                last_name=last,
                email=email,
                membership_type=mtype,
                membership_start_date=start,
            ))

        print("Seeding staff...")
        for emp_id, first, last, position, email, hired, salary in STAFF:
            db.add(models.Staff(
                employee_id=emp_id,
                first_name=first,
                last_name=last,
                position=position,
                email=email,
                hire_date=hired,
                salary=salary,
            ))

        db.commit()
    except Exception:
        db.rollback()
        raise

    print("Seed complete!")
    return True


def run():
    init_db()
    db = SessionLocal()
    try:
        seed_db(db)
    finally:
        db.close()


if __name__ == "__main__":
    run()
