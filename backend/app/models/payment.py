"""
models/payment.py — Payment table definition (one row per resident per bill).

Key design points:
  - UNIQUE(bill_id, user_id): a resident owes a bill at most once.
  - `amount` uses Numeric(12, 2). The rows of one bill sum to its total.
  - bill_id ON DELETE CASCADE; user_id ON DELETE RESTRICT.
  - Transitions: pending → paid (paid_at set), pending → failed, failed → pending.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.enums import PaymentStatus, enum_values


class Payment(db.Model):
    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("bill_id", "user_id", name="uq_payments_bill_user"),
        CheckConstraint("amount >= 0", name="ck_payments_amount_nonnegative"),
        Index("idx_payments_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    bill_id: Mapped[int] = mapped_column(
        ForeignKey("bills.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    status: Mapped[PaymentStatus] = mapped_column(
        Enum(
            PaymentStatus,
            name="payment_status_enum",
            values_callable=enum_values,
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
        server_default=PaymentStatus.PENDING.value,
    )

    paid_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    payment_reference: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
    )

    # Client key of the batch that paid this row; replays match on it.
    idempotency_key: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    bill: Mapped["Bill"] = relationship(  # noqa: F821
        "Bill",
        back_populates="payments",
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="payments",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Payment id={self.id} "
            f"bill_id={self.bill_id} "
            f"user_id={self.user_id} "
            f"amount={self.amount} "
            f"status={self.status.value}>"
        )
