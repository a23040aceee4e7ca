"""
Drop and recreate every table. Pass --seed to load the sample catalog afterwards.

Usage:
    python reset_db.py [--seed]
"""

import sys

from database import SessionLocal, drop_db, engine, init_db, make_session_factory


def run(bind=engine, seed=False):
    print("Dropping all tables...")
    drop_db(bind)

    print("Creating all tables...")
    init_db(bind)

    if seed:
        from seed import seed_db

        db = SessionLocal() if bind is engine else make_session_factory(bind)()
        try:
            seed_db(db)
        finally:
            db.close()

    print("Database reset complete!")


if __name__ == "__main__":
    run(seed="--seed" in sys.argv[1:])
