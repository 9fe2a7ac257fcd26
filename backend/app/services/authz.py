"""
services/authz.py — Membership predicates and the guards built on them.

is_member / is_manager_of are total functions over the memberships table:
they return a bool and only raise on store failure. is_manager_of implies
is_member because both read the same row.

The require_* guards turn a False into the matching AppError so services
share one wording for 403/404.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.apartment import Apartment
from backend.app.repositories import membership_repo


def is_member(user_id: int, apartment_id: int, session: Session) -> bool:
    return membership_repo.get(user_id, apartment_id, session) is not None


def is_manager_of(user_id: int, apartment_id: int, session: Session) -> bool:
    membership = membership_repo.get(user_id, apartment_id, session)
    return membership is not None and membership.is_manager


def get_apartment_or_404(apartment_id: int, session: Session) -> Apartment:
    apartment = session.get(Apartment, apartment_id)
    if apartment is None:
        raise AppError(
            ErrorCode.APARTMENT_NOT_FOUND,
            f"Apartment {apartment_id} not found.",
            404,
        )
    return apartment


def require_manager(user_id: int, apartment_id: int, session: Session) -> Apartment:
    """Returns the apartment when `user_id` manages it; 404 / 403 otherwise."""
    apartment = get_apartment_or_404(apartment_id, session)
    if not is_manager_of(user_id, apartment_id, session):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the manager of this apartment can perform this action.",
            403,
        )
    return apartment


def require_member(user_id: int, apartment_id: int, session: Session) -> Apartment:
    apartment = get_apartment_or_404(apartment_id, session)
    if not is_member(user_id, apartment_id, session):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You are not a member of this apartment.",
            403,
        )
    return apartment
