"""
repositories/bill_repo.py — Bill persistence and lookups.
"""

from __future__ import annotations

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from backend.app.models.bill import Bill
from backend.app.models.enums import BillType
from backend.app.models.payment import Payment


def get(bill_id: int, session: Session) -> Bill | None:
    return session.get(Bill, bill_id)


def add(bill: Bill, session: Session) -> Bill:
    session.add(bill)
    session.flush()
    return bill


def list_for_apartment(apartment_id: int, session: Session) -> list[Bill]:
    return list(
        session.execute(
            select(Bill)
            .where(Bill.apartment_id == apartment_id)
            .order_by(Bill.due_date.desc(), Bill.id.desc())
        ).scalars().all()
    )


def list_undivided(
        apartment_id: int,
        session: Session,
        bill_type: BillType | None = None,
) -> list[Bill]:
    """Bills of an apartment (optionally of one type) that have no payment rows yet."""
    stmt = (
        select(Bill)
        .where(
            Bill.apartment_id == apartment_id,
            ~exists().where(Payment.bill_id == Bill.id),
        )
        .order_by(Bill.id)
    )
    if bill_type is not None:
        stmt = stmt.where(Bill.bill_type == bill_type)
    return list(session.execute(stmt).scalars().all())


def delete(bill: Bill, session: Session) -> None:
    session.delete(bill)
    session.flush()
