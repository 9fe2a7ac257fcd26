"""
repositories/membership_repo.py — Queries over the (user, apartment) → role relation.

Plain functions over a SQLAlchemy Session. They flush but never commit;
the route that owns the request commits.
"""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from backend.app.models.apartment import Apartment
from backend.app.models.membership import Membership
from backend.app.models.user import User


def get(user_id: int, apartment_id: int, session: Session) -> Membership | None:
    return session.get(Membership, (user_id, apartment_id))


def add(
        user_id: int,
        apartment_id: int,
        session: Session,
        is_manager: bool = False,
) -> Membership:
    """Inserts one membership row and flushes. IntegrityError propagates."""
    membership = Membership(
        user_id=user_id,
        apartment_id=apartment_id,
        is_manager=is_manager,
    )
    session.add(membership)
    session.flush()
    return membership


def remove(user_id: int, apartment_id: int, session: Session) -> int:
    result = session.execute(
        delete(Membership).where(
            Membership.user_id == user_id,
            Membership.apartment_id == apartment_id,
        )
    )
    session.flush()
    return result.rowcount


def list_members(
        apartment_id: int,
        session: Session,
        include_manager: bool = True,
) -> list[tuple[User, Membership]]:
    """(user, membership) pairs for an apartment, ordered by ascending user id."""
    stmt = (
        select(User, Membership)
        .join(Membership, Membership.user_id == User.id)
        .where(Membership.apartment_id == apartment_id)
        .order_by(User.id)
    )
    if not include_manager:
        stmt = stmt.where(Membership.is_manager.is_(False))
    return [(user, membership) for user, membership in session.execute(stmt).all()]


def list_for_user(user_id: int, session: Session) -> list[Membership]:
    return list(
        session.execute(
            select(Membership)
            .where(Membership.user_id == user_id)
            .order_by(Membership.apartment_id)
        ).scalars().all()
    )


def list_residents_managed_by(
        manager_id: int,
        session: Session,
        user_id: int | None = None,
) -> list[tuple[User, Membership]]:
    """
    Non-manager memberships in apartments managed by `manager_id`, ordered by
    user id then apartment id. `user_id` narrows it to one resident.
    """
    stmt = (
        select(User, Membership)
        .join(Membership, Membership.user_id == User.id)
        .join(Apartment, Apartment.id == Membership.apartment_id)
        .where(
            Apartment.manager_id == manager_id,
            Membership.is_manager.is_(False),
        )
        .order_by(User.id, Membership.apartment_id)
    )
    if user_id is not None:
        stmt = stmt.where(Membership.user_id == user_id)
    return [(user, membership) for user, membership in session.execute(stmt).all()]
