"""
repositories/payment_repo.py — Per-resident payment obligations.

Status changes to `paid` happen only in mark_paid(), which re-reads the
rows under FOR UPDATE (a no-op on SQLite) so two batches racing for the
same (bill, user) cannot both flip it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.models.apartment import Apartment
from backend.app.models.bill import Bill
from backend.app.models.enums import PAYABLE_PAYMENT_STATUSES, PaymentStatus
from backend.app.models.payment import Payment


def add(bill_id: int, user_id: int, amount: Decimal, session: Session) -> Payment:
    payment = Payment(
        bill_id=bill_id,
        user_id=user_id,
        amount=amount,
        status=PaymentStatus.PENDING,
    )
    session.add(payment)
    session.flush()
    return payment


def get_for_bill_and_user(bill_id: int, user_id: int, session: Session) -> Payment | None:
    return session.execute(
        select(Payment).where(
            Payment.bill_id == bill_id,
            Payment.user_id == user_id,
        )
    ).scalar_one_or_none()


def list_for_bill(bill_id: int, session: Session) -> list[Payment]:
    return list(
        session.execute(
            select(Payment).where(Payment.bill_id == bill_id).order_by(Payment.user_id)
        ).scalars().all()
    )


def list_for_user(
        user_id: int,
        session: Session,
        bill_ids: list[int] | None = None,
        status: PaymentStatus | None = None,
) -> list[Payment]:
    stmt = select(Payment).where(Payment.user_id == user_id)
    if bill_ids is not None:
        stmt = stmt.where(Payment.bill_id.in_(bill_ids))
    if status is not None:
        stmt = stmt.where(Payment.status == status)
    return list(session.execute(stmt.order_by(Payment.bill_id)).scalars().all())


def list_unpaid_bills(user_id: int, session: Session) -> list[tuple[Bill, Payment]]:
    rows = session.execute(
        select(Bill, Payment)
        .join(Payment, Payment.bill_id == Bill.id)
        .where(
            Payment.user_id == user_id,
            Payment.status.in_(PAYABLE_PAYMENT_STATUSES),
        )
        .order_by(Bill.due_date, Bill.id)
    ).all()
    return [(bill, payment) for bill, payment in rows]


def list_paid_history(user_id: int, session: Session) -> list[tuple[Payment, Bill, str]]:
    rows = session.execute(
        select(Payment, Bill, Apartment.name)
        .join(Bill, Bill.id == Payment.bill_id)
        .join(Apartment, Apartment.id == Bill.apartment_id)
        .where(
            Payment.user_id == user_id,
            Payment.status == PaymentStatus.PAID,
        )
        .order_by(Payment.paid_at.desc(), Payment.id.desc())
    ).all()
    return [(payment, bill, apartment_name) for payment, bill, apartment_name in rows]


def has_paid(bill_id: int, session: Session) -> bool:
    return session.execute(
        select(Payment.id)
        .where(
            Payment.bill_id == bill_id,
            Payment.status == PaymentStatus.PAID,
        )
        .limit(1)
    ).first() is not None


def mark_paid(
        payment_ids: list[int],
        paid_at: datetime,
        reference: str,
        idempotency_key: str,
        session: Session,
) -> list[Payment]:
    """
    Flips still-payable rows (pending or failed) among `payment_ids` to paid
    and returns the rows that changed. Rows already paid by a concurrent
    batch are left alone.
    """
    rows = session.execute(
        select(Payment)
        .where(Payment.id.in_(payment_ids))
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()

    changed = []
    for payment in rows:
        if payment.status not in PAYABLE_PAYMENT_STATUSES:
            continue
        payment.status = PaymentStatus.PAID
        payment.paid_at = paid_at
        payment.payment_reference = reference
        payment.idempotency_key = idempotency_key
        changed.append(payment)

    session.flush()
    return changed
