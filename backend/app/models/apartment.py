"""
models/apartment.py — Apartment table definition.

An apartment owns its memberships and bills; deleting it removes both
(and, through bills, every payment row).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class Apartment(db.Model):
    __tablename__ = "apartments"

    __table_args__ = (
        CheckConstraint("units_count >= 1", name="ck_apartments_units_positive"),
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_apartments_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    address: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        server_default="",
    )

    units_count: Mapped[int] = mapped_column(nullable=False)

    # ON DELETE RESTRICT: a manager with apartments cannot be deleted.
    manager_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────
    # Cascades run in the ORM so they also hold on databases without FK
    # enforcement (SQLite in tests).

    manager: Mapped["User"] = relationship("User")  # noqa: F821

    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="apartment",
        cascade="all, delete-orphan",
    )

    bills: Mapped[list["Bill"]] = relationship(  # noqa: F821
        "Bill",
        back_populates="apartment",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Apartment id={self.id} name={self.name!r} manager_id={self.manager_id}>"
