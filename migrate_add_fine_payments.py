"""
Run this script to add the `amount_paid` column to `fines` on databases
created before partial payments were tracked.

Usage:
    python migrate_add_fine_payments.py

It uses the `engine` from `database.py` in this repo. Safe to run twice.
"""

from sqlalchemy import inspect, text

from database import engine

STATEMENTS = [
    "ALTER TABLE fines ADD COLUMN amount_paid NUMERIC(8, 2) NOT NULL DEFAULT 0",
    # rows already settled in full before the column existed
    "UPDATE fines SET amount_paid = amount WHERE status = 'Paid'",
]

# SQLite can't add a constraint to an existing table
CONSTRAINT_STATEMENT = (
    "ALTER TABLE fines ADD CONSTRAINT chk_fine_amount_paid "
    "CHECK (amount_paid >= 0 AND amount_paid <= amount)"
)


def statements_for(dialect_name: str) -> list:
    if dialect_name == "sqlite":
        return list(STATEMENTS)
    return STATEMENTS + [CONSTRAINT_STATEMENT]


def run(bind=engine) -> bool:
    """Apply the migration. Returns False when there was nothing to do."""
    columns = {c["name"] for c in inspect(bind).get_columns("fines")}
    if "amount_paid" in columns:
        print("fines.amount_paid already exists, nothing to do.")
        return False

    print("Running fine payments migration...")
    with bind.begin() as conn:
        for sql in statements_for(bind.dialect.name):
            print("Executing:", sql)
            conn.execute(text(sql))
    print("Migration finished.")
    return True


if __name__ == "__main__":
    run()
