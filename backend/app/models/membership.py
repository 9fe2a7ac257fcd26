"""
models/membership.py — Membership junction table definition.

Composite primary key (user_id, apartment_id). Exactly one row per apartment
carries is_manager = true, and its user_id equals apartments.manager_id; the
partial unique index below enforces the "at most one" half on PostgreSQL and
SQLite, and apartment_service keeps the "at least one" half.

FK policy: apartment_id ON DELETE CASCADE (memberships die with the
apartment); user_id ON DELETE RESTRICT.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class Membership(db.Model):
    __tablename__ = "memberships"

    __table_args__ = (
        Index(
            "uq_memberships_one_manager",
            "apartment_id",
            unique=True,
            postgresql_where=text("is_manager"),
            sqlite_where=text("is_manager = 1"),
        ),
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        primary_key=True,
    )

    apartment_id: Mapped[int] = mapped_column(
        ForeignKey("apartments.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )

    is_manager: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="memberships",
    )

    apartment: Mapped["Apartment"] = relationship(  # noqa: F821
        "Apartment",
        back_populates="memberships",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Membership user_id={self.user_id} "
            f"apartment_id={self.apartment_id} "
            f"is_manager={self.is_manager}>"
        )
