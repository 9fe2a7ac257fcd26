"""
models/enums.py — Enumerations shared by models, schemas and services.

Defined once here so they can be imported without pulling in a full model.
Do not duplicate these as plain string constants anywhere else.
"""

from __future__ import annotations

import enum


class UserRole(str, enum.Enum):
    """user_role_enum AS ENUM ('manager', 'resident')"""
    MANAGER  = "manager"
    RESIDENT = "resident"


class BillType(str, enum.Enum):
    """bill_type_enum AS ENUM (...)"""
    WATER       = "water"
    ELECTRICITY = "electricity"
    GAS         = "gas"
    MAINTENANCE = "maintenance"
    OTHER       = "other"


class PaymentStatus(str, enum.Enum):
    """
    payment_status_enum AS ENUM ('pending', 'paid', 'failed')

    PayBatch never writes `failed`: a gateway refusal leaves the rows
    pending. The value exists for rows marked failed outside the API, and
    such rows are payable again (failed → pending → paid in one batch).
    """
    PENDING = "pending"
    PAID    = "paid"
    FAILED  = "failed"


# Statuses a PayBatch may charge.
PAYABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED})


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'water'), not names ('WATER')."""
    return [member.value for member in enum_cls]
