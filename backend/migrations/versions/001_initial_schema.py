"""Initial schema — users, apartments, memberships, bills, payments.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  Schema changes go in a NEW migration file.

Creation order:
  1. PostgreSQL enum types
  2. Tables in FK dependency order (users → apartments → memberships → bills
     → payments)
  3. Indexes, including the partial unique index that allows one manager
     membership per apartment

ON DELETE policies:
  apartments.manager_id    → RESTRICT  (a manager with apartments stays)
  memberships.apartment_id → CASCADE   (memberships die with the apartment)
  memberships.user_id      → RESTRICT
  bills.apartment_id       → CASCADE   (bills owned by apartment)
  payments.bill_id         → CASCADE   (payments owned by bill)
  payments.user_id         → RESTRICT  (payment history keeps the user)

Invitations are not stored here; they live in redis with a TTL.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── Step 1: enum types ─────────────────────────────────────────────────

    op.execute("CREATE TYPE user_role_enum AS ENUM ('manager', 'resident')")
    op.execute("""
        CREATE TYPE bill_type_enum AS ENUM (
            'water',
            'electricity',
            'gas',
            'maintenance',
            'other'
        )
    """)
    op.execute("CREATE TYPE payment_status_enum AS ENUM ('pending', 'paid', 'failed')")

    user_role = postgresql.ENUM(name="user_role_enum", create_type=False)
    bill_type = postgresql.ENUM(name="bill_type_enum", create_type=False)
    payment_status = postgresql.ENUM(name="payment_status_enum", create_type=False)

    # ── Step 2: users ──────────────────────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("full_name", sa.String(120), nullable=False, server_default=""),
        sa.Column("role", user_role, nullable=False),
        sa.Column("telegram_user", sa.String(32), nullable=True),
        sa.Column(
            "telegram_chat_id",
            sa.BigInteger(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("telegram_user", name="uq_users_telegram_user"),
        sa.CheckConstraint(
            "LENGTH(TRIM(username)) > 0",
            name="ck_users_username_nonempty",
        ),
        sa.CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    # ── Step 3: apartments ─────────────────────────────────────────────────

    op.create_table(
        "apartments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("address", sa.String(255), nullable=False, server_default=""),
        sa.Column("units_count", sa.Integer(), nullable=False),
        sa.Column(
            "manager_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_apartments_manager"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_apartments"),
        sa.CheckConstraint("units_count >= 1", name="ck_apartments_units_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_apartments_name_nonempty",
        ),
    )
    op.create_index("ix_apartments_manager_id", "apartments", ["manager_id"])

    # ── Step 4: memberships ────────────────────────────────────────────────

    op.create_table(
        "memberships",
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_memberships_user"),
            nullable=False,
        ),
        sa.Column(
            "apartment_id",
            sa.Integer(),
            sa.ForeignKey("apartments.id", ondelete="CASCADE", name="fk_memberships_apartment"),
            nullable=False,
        ),
        sa.Column(
            "is_manager",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("user_id", "apartment_id", name="pk_memberships"),
    )
    op.create_index("ix_memberships_apartment_id", "memberships", ["apartment_id"])
    op.create_index(
        "uq_memberships_one_manager",
        "memberships",
        ["apartment_id"],
        unique=True,
        postgresql_where=sa.text("is_manager"),
    )

    # ── Step 5: bills ──────────────────────────────────────────────────────

    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "apartment_id",
            sa.Integer(),
            sa.ForeignKey("apartments.id", ondelete="CASCADE", name="fk_bills_apartment"),
            nullable=False,
        ),
        sa.Column("bill_type", bill_type, nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("billing_deadline", sa.Date(), nullable=True),
        sa.Column("description", sa.String(500), nullable=False, server_default=""),
        sa.Column("image_key", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_bills"),
        sa.CheckConstraint("total_amount > 0", name="ck_bills_total_positive"),
        sa.CheckConstraint(
            "billing_deadline IS NULL OR billing_deadline <= due_date",
            name="ck_bills_deadline_before_due",
        ),
    )
    op.create_index("ix_bills_apartment_id", "bills", ["apartment_id"])
    op.create_index("idx_bills_apartment_type", "bills", ["apartment_id", "bill_type"])

    # ── Step 6: payments ───────────────────────────────────────────────────

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "bill_id",
            sa.Integer(),
            sa.ForeignKey("bills.id", ondelete="CASCADE", name="fk_payments_bill"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="RESTRICT", name="fk_payments_user"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "status",
            payment_status,
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.String(128), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_payments"),
        sa.UniqueConstraint("bill_id", "user_id", name="uq_payments_bill_user"),
        sa.CheckConstraint("amount >= 0", name="ck_payments_amount_nonnegative"),
    )
    op.create_index("ix_payments_bill_id", "payments", ["bill_id"])
    op.create_index("idx_payments_user_status", "payments", ["user_id", "status"])


def downgrade() -> None:
    # Reverse FK order, then the enum types.
    op.drop_table("payments")
    op.drop_table("bills")
    op.drop_table("memberships")
    op.drop_table("apartments")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS payment_status_enum")
    op.execute("DROP TYPE IF EXISTS bill_type_enum")
    op.execute("DROP TYPE IF EXISTS user_role_enum")
