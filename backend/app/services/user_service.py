"""
services/user_service.py — Self-profile, account deletion and chat binding,
plus the manager's view of the residents of their apartments.

A manager only ever sees or removes users who hold a resident membership in
one of the apartments they manage; any other user id is FORBIDDEN (403),
the same answer a non-manager gets for someone else's apartment.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.apartment import Apartment
from backend.app.models.membership import Membership
from backend.app.models.payment import Payment
from backend.app.models.user import User
from backend.app.repositories import membership_repo
from backend.app.services.auth_service import build_user_dict
from backend.app.validators import is_valid_telegram, normalize_telegram_username

logger = logging.getLogger(__name__)

_UNSET = object()


def _get_user_or_404(user_id: int, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return user


def get_profile(user_id: int, session: Session) -> dict:
    return build_user_dict(_get_user_or_404(user_id, session))


def _apply_telegram_change(user: User, new_value: str | None, session: Session) -> None:
    """
    Same value → nothing changes (the chat binding survives).
    Different value, including clearing it → store it and drop the binding,
    because the bound chat belongs to the old handle.
    """
    new_value = new_value or None
    if new_value == user.telegram_user:
        return

    if new_value is not None:
        taken = session.execute(
            select(User.id).where(
                User.telegram_user == new_value,
                User.id != user.id,
            )
        ).first()
        if taken is not None:
            raise AppError(
                ErrorCode.DUPLICATE_TELEGRAM_USER,
                f"The telegram username '{new_value}' is already linked to another account.",
                409,
                field="telegram_user",
            )

    user.telegram_user = new_value
    user.telegram_chat_id = 0


def update_profile(
        user_id: int,
        session: Session,
        email=_UNSET,
        phone=_UNSET,
        full_name=_UNSET,
        telegram_user=_UNSET,
) -> dict:
    """
    Partial update of the caller's own profile. Role and username are fixed.

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(DUPLICATE_EMAIL, 409)
      AppError(DUPLICATE_TELEGRAM_USER, 409)
    """
    user = _get_user_or_404(user_id, session)

    if email is not _UNSET and email != user.email:
        taken = session.execute(
            select(User.id).where(User.email == email, User.id != user.id)
        ).first()
        if taken is not None:
            raise AppError(
                ErrorCode.DUPLICATE_EMAIL,
                f"The email address '{email}' is already registered.",
                409,
                field="email",
            )
        user.email = email

    if phone is not _UNSET:
        user.phone = phone or None

    if full_name is not _UNSET:
        user.full_name = full_name or ""

    if telegram_user is not _UNSET:
        _apply_telegram_change(user, telegram_user, session)

    session.flush()
    return build_user_dict(user)


def delete_account(user_id: int, session: Session) -> None:
    """
    Hard-deletes the caller. Refused while the user manages an apartment,
    belongs to one, or has payment rows (accounting history).

    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(USER_HAS_DEPENDENTS, 409)
    """
    user = _get_user_or_404(user_id, session)

    for label, column in (
        ("managed apartments", Apartment.manager_id),
        ("apartment memberships", Membership.user_id),
        ("payment records", Payment.user_id),
    ):
        if session.execute(select(column).where(column == user_id).limit(1)).first():
            raise AppError(
                ErrorCode.USER_HAS_DEPENDENTS,
                f"This account still has {label} and cannot be deleted.",
                409,
            )

    session.delete(user)
    session.flush()


def bind_telegram_chat(chat_username: str | None, chat_id: int, session: Session) -> bool:
    """
    Stores `chat_id` on the user whose telegram_user matches the chat's
    username. Returns False (and changes nothing) when no user matches.
    """
    username = normalize_telegram_username(chat_username)
    if not is_valid_telegram(username) or not chat_id:
        logger.info("Ignoring /start from unusable chat username %r", chat_username)
        return False

    user = session.execute(
        select(User).where(User.telegram_user == username)
    ).scalar_one_or_none()
    if user is None:
        logger.info("No account linked to telegram user %s", username)
        return False

    if user.telegram_chat_id != chat_id:
        user.telegram_chat_id = chat_id
        session.flush()
        logger.info("Bound telegram chat for user %s", user.id)
    return True


# ── Manager view of residents ──────────────────────────────────────────────

def _group_by_user(pairs) -> list[dict]:
    result: dict[int, dict] = {}
    for user, membership in pairs:
        entry = result.get(user.id)
        if entry is None:
            entry = build_user_dict(user)
            entry["apartment_ids"] = []
            result[user.id] = entry
        entry["apartment_ids"].append(membership.apartment_id)
    return list(result.values())


def _managed_memberships(manager_id: int, user_id: int, session: Session):
    _get_user_or_404(user_id, session)
    pairs = membership_repo.list_residents_managed_by(manager_id, session, user_id=user_id)
    if not pairs:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"User {user_id} is not a resident of any apartment you manage.",
            403,
        )
    return pairs


def list_managed_residents(manager_id: int, session: Session) -> list[dict]:
    """Residents of every apartment the caller manages, each listed once."""
    return _group_by_user(membership_repo.list_residents_managed_by(manager_id, session))


def get_managed_resident(manager_id: int, user_id: int, session: Session) -> dict:
    """
    Raises:
      AppError(USER_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403) — not a resident of the caller's apartments
    """
    return _group_by_user(_managed_memberships(manager_id, user_id, session))[0]


def remove_managed_resident(manager_id: int, user_id: int, session: Session) -> list[int]:
    """
    Removes the user from every apartment the caller manages and returns
    those apartment ids. The account itself, its memberships elsewhere and
    its payment rows stay.
    """
    pairs = _managed_memberships(manager_id, user_id, session)
    apartment_ids = [membership.apartment_id for _, membership in pairs]
    for apartment_id in apartment_ids:
        membership_repo.remove(user_id, apartment_id, session)
    logger.info(
        "Manager %s removed user %s from apartments %s", manager_id, user_id, apartment_ids
    )
    return apartment_ids
