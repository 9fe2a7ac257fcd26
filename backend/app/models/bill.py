"""
models/bill.py — Bill table definition.

Key design points:
  - `total_amount` uses Numeric(12, 2) — never Float.
  - A bill with no payment rows is "undivided"; once rows exist the set is fixed.
  - `image_key` is opaque; only the image sidecar knows what it points at.
  - Payments are owned by their bill (delete cascade).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db
from backend.app.models.enums import BillType, enum_values


class Bill(db.Model):
    __tablename__ = "bills"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_bills_total_positive"),
        CheckConstraint(
            "billing_deadline IS NULL OR billing_deadline <= due_date",
            name="ck_bills_deadline_before_due",
        ),
        Index("idx_bills_apartment_type", "apartment_id", "bill_type"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    apartment_id: Mapped[int] = mapped_column(
        ForeignKey("apartments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    bill_type: Mapped[BillType] = mapped_column(
        Enum(
            BillType,
            name="bill_type_enum",
            values_callable=enum_values,
        ),
        nullable=False,
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    billing_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)

    description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        default="",
        server_default="",
    )

    image_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    apartment: Mapped["Apartment"] = relationship(  # noqa: F821
        "Apartment",
        back_populates="bills",
    )

    payments: Mapped[list["Payment"]] = relationship(  # noqa: F821
        "Payment",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="Payment.user_id",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Bill id={self.id} "
            f"apartment_id={self.apartment_id} "
            f"type={self.bill_type.value} "
            f"total={self.total_amount}>"
        )
