from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import text

import crud
from schemas import FineCreate, FinePayment, FineUpdate

TODAY = date.today()


def _balance(db, member_id):
    db.expire_all()
    return crud.get_member_by_id(member_id, db).fine_balance


def _fine(db, member, amount, fine_type="Overdue", **extra):
    return crud.add_fine(
        FineCreate(member_id=member.member_id, fine_type=fine_type, amount=Decimal(amount), **extra), db
    )


def test_fines_add_up(db, member):
    _fine(db, member, "5.00")
    _fine(db, member, "3.50", fine_type="Damage")
    assert _balance(db, member.member_id) == Decimal("8.50")


def test_new_fine_defaults(db, member):
    f = _fine(db, member, "2.00")
    assert f.status == "Pending"
    assert f.fine_date == TODAY
    assert f.paid_date is None
    assert f.amount_paid == Decimal("0.00")
    assert f.outstanding == Decimal("2.00")


def test_fine_for_missing_member(db):
    with pytest.raises(ValueError, match="does not exist"):
        crud.add_fine(FineCreate(member_id=999, fine_type="Overdue", amount=Decimal("1.00")), db)


def test_fine_linked_to_borrowing(db, book, member):
    record = crud.borrow_book(member.member_id, book.book_id, db)
    f = _fine(db, member, "1.25", borrowing_id=record.borrowing_id, description="Late return")
    assert f.borrowing.book_id == book.book_id
    # the fine outlives its borrowing record
    crud.delete_borrowing(record.borrowing_id, db)
    db.expire_all()
    assert crud.get_fine_by_id(f.fine_id, db).borrowing_id is None


def test_partial_then_full_payment(db, member):
    f = _fine(db, member, "10.00")
    f = crud.pay_fine(f.fine_id, FinePayment(amount=Decimal("4.00")), db)
    assert f.status == "Partial"
    assert f.amount_paid == Decimal("4.00")
    assert f.paid_date is None
    assert _balance(db, member.member_id) == Decimal("6.00")

    f = crud.pay_fine(f.fine_id, FinePayment(amount=Decimal("6.00")), db)
    assert f.status == "Paid"
    assert f.paid_date == TODAY
    assert f.outstanding == Decimal("0.00")
    assert _balance(db, member.member_id) == Decimal("0.00")


def test_payment_date_is_kept(db, member):
    f = _fine(db, member, "1.00", fine_date=TODAY - timedelta(days=5))
    paid_on = TODAY - timedelta(days=1)
    f = crud.pay_fine(f.fine_id, FinePayment(amount=Decimal("1.00"), paid_date=paid_on), db)
    assert f.paid_date == paid_on


def test_overpayment_refused(db, member):
    f = _fine(db, member, "2.00")
    with pytest.raises(ValueError, match="exceeds"):
        crud.pay_fine(f.fine_id, FinePayment(amount=Decimal("2.01")), db)
    assert _balance(db, member.member_id) == Decimal("2.00")


def test_paid_fine_takes_no_more_payments(db, member):
    f = _fine(db, member, "2.00")
    crud.pay_fine(f.fine_id, FinePayment(amount=Decimal("2.00")), db)
    with pytest.raises(ValueError, match="nothing to pay"):
        crud.pay_fine(f.fine_id, FinePayment(amount=Decimal("1.00")), db)
    with pytest.raises(ValueError, match="cannot be waived"):
        crud.waive_fine(f.fine_id, db)


def test_waive_forgives_the_remainder(db, member):
    f = _fine(db, member, "7.50")
    other = _fine(db, member, "1.00")
    crud.pay_fine(f.fine_id, FinePayment(amount=Decimal("2.50")), db)
    waived = crud.waive_fine(f.fine_id, db)
    assert waived.status == "Waived"
    assert _balance(db, member.member_id) == Decimal("1.00")
    assert crud.get_fine_by_id(other.fine_id, db).status == "Pending"


def test_delete_open_fine_reduces_balance(db, member):
    f = _fine(db, member, "4.00")
    _fine(db, member, "1.00")
    crud.pay_fine(f.fine_id, FinePayment(amount=Decimal("1.50")), db)
    assert crud.delete_fine(f.fine_id, db) is True
    assert _balance(db, member.member_id) == Decimal("1.00")
    assert crud.delete_fine(f.fine_id, db) is False


def test_delete_settled_fine_leaves_balance(db, member):
    f = _fine(db, member, "4.00")
    _fine(db, member, "1.00")
    crud.waive_fine(f.fine_id, db)
    crud.delete_fine(f.fine_id, db)
    assert _balance(db, member.member_id) == Decimal("1.00")


def test_update_fine_leaves_money_alone(db, member):
    f = _fine(db, member, "3.00")
    f = crud.update_fine(f.fine_id, FineUpdate(fine_type="Damage", description="Torn cover"), db)
    assert f.fine_type == "Damage"
    assert f.amount == Decimal("3.00")
    assert _balance(db, member.member_id) == Decimal("3.00")


def test_recalculate_balance(db, member):
    f = _fine(db, member, "5.00")
    _fine(db, member, "3.50")
    crud.pay_fine(f.fine_id, FinePayment(amount=Decimal("2.00")), db)

    db.execute(text("UPDATE members SET fine_balance = 0 WHERE member_id = :m"), {"m": member.member_id})
    db.commit()
    assert crud.recalculate_fine_balance(member.member_id, db) == Decimal("6.50")
    assert _balance(db, member.member_id) == Decimal("6.50")
    assert crud.recalculate_fine_balance(999, db) is None


def test_fines_listed_per_member(db, member):
    from schemas import MemberCreate

    other = crud.add_member(MemberCreate(membership_number="MEM002", first_name="Sarah", last_name="Johnson"), db)
    mine = _fine(db, member, "1.00")
    _fine(db, other, "2.00")
    assert [f.fine_id for f in crud.list_fines_for_member(member.member_id, db)] == [mine.fine_id]
    assert len(crud.list_fines(db)) == 2


def test_paid_date_not_before_fine_date(db, member):
    f = _fine(db, member, "1.00")
    with pytest.raises(ValueError):
        crud.pay_fine(f.fine_id, FinePayment(amount=Decimal("1.00"), paid_date=TODAY - timedelta(days=3)), db)
    assert _balance(db, member.member_id) == Decimal("1.00")
