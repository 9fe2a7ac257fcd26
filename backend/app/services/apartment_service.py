"""
services/apartment_service.py — Apartment lifecycle and membership changes.

Invariant kept here: every apartment has exactly one membership row with
is_manager = true, for apartments.manager_id. create_apartment() inserts it
together with the apartment, leave_apartment() refuses to remove it, and the
manager never changes afterwards.

Services flush; the route commits.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.apartment import Apartment
from backend.app.repositories import membership_repo
from backend.app.services import authz
from backend.app.services.after_commit import after_commit
from backend.app.sidecars.image_store import ImageStoreError

logger = logging.getLogger(__name__)


def _build_apartment_dict(apartment: Apartment) -> dict:
    return {
        "id": apartment.id,
        "name": apartment.name,
        "address": apartment.address,
        "units_count": apartment.units_count,
        "manager_id": apartment.manager_id,
        "created_at": apartment.created_at.isoformat() if apartment.created_at else None,
    }


def create_apartment(
        manager_id: int,
        name: str,
        units_count: int,
        session: Session,
        address: str = "",
) -> dict:
    """
    Creates an apartment and the caller's manager membership in one flush.
    The role check (caller is a manager) happens in the route.
    """
    apartment = Apartment(
        name=name,
        address=address or "",
        units_count=units_count,
        manager_id=manager_id,
    )
    session.add(apartment)
    session.flush()  # populate apartment.id for the membership row

    membership_repo.add(manager_id, apartment.id, session, is_manager=True)
    logger.info("Apartment %s created by manager %s", apartment.id, manager_id)
    return _build_apartment_dict(apartment)


def get_apartment(apartment_id: int, caller_id: int, session: Session) -> dict:
    apartment = authz.require_manager(caller_id, apartment_id, session)
    return _build_apartment_dict(apartment)


def update_apartment(
        apartment_id: int,
        caller_id: int,
        session: Session,
        name: str | None = None,
        address: str | None = None,
        units_count: int | None = None,
) -> dict:
    apartment = authz.require_manager(caller_id, apartment_id, session)

    if name is not None:
        apartment.name = name
    if address is not None:
        apartment.address = address
    if units_count is not None:
        apartment.units_count = units_count

    session.flush()
    return _build_apartment_dict(apartment)


def delete_apartment(
        apartment_id: int,
        caller_id: int,
        session: Session,
        images=None,
) -> None:
    """
    Deletes the apartment with its memberships, bills and payments. Users
    stay. Bill images are removed best-effort once the deletion is committed.
    """
    apartment = authz.require_manager(caller_id, apartment_id, session)
    image_keys = [bill.image_key for bill in apartment.bills if bill.image_key]

    session.delete(apartment)
    session.flush()

    if images is not None and image_keys:
        after_commit(session, _delete_images_quietly, images, image_keys, apartment_id)
    logger.info("Apartment %s deleted by manager %s", apartment_id, caller_id)


def _delete_images_quietly(images, keys: list[str], apartment_id: int) -> None:
    for key in keys:
        try:
            images.delete(key)
        except ImageStoreError:
            logger.warning("Failed to delete image %s of apartment %s", key, apartment_id)


def list_residents(apartment_id: int, caller_id: int, session: Session) -> list[dict]:
    authz.require_manager(caller_id, apartment_id, session)
    return [
        {
            "id": user.id,
            "username": user.username,
            "full_name": user.full_name,
            "email": user.email,
            "phone": user.phone,
            "telegram_user": user.telegram_user,
            "telegram_connected": user.telegram_connected,
            "is_manager": membership.is_manager,
            "joined_at": membership.joined_at.isoformat() if membership.joined_at else None,
        }
        for user, membership in membership_repo.list_members(apartment_id, session)
    ]


def list_user_apartments(user_id: int, session: Session) -> list[dict]:
    """Apartments the caller belongs to, with their role in each."""
    result = []
    for membership in membership_repo.list_for_user(user_id, session):
        entry = _build_apartment_dict(membership.apartment)
        entry["is_manager"] = membership.is_manager
        result.append(entry)
    return result


def leave_apartment(apartment_id: int, user_id: int, session: Session) -> None:
    """
    Removes the caller's own membership. Payment rows already created for
    the caller stay; the manager cannot leave.

    Raises:
      AppError(APARTMENT_NOT_FOUND, 404)
      AppError(NOT_A_MEMBER, 409)
      AppError(MANAGER_CANNOT_LEAVE, 409)
    """
    authz.get_apartment_or_404(apartment_id, session)

    membership = membership_repo.get(user_id, apartment_id, session)
    if membership is None:
        raise AppError(
            ErrorCode.NOT_A_MEMBER,
            f"You are not a member of apartment {apartment_id}.",
            409,
        )
    if membership.is_manager:
        raise AppError(
            ErrorCode.MANAGER_CANNOT_LEAVE,
            "The manager cannot leave the apartment they manage. Delete it instead.",
            409,
        )

    membership_repo.remove(user_id, apartment_id, session)


def list_resident_apartments(manager_id: int, user_id: int, session: Session) -> list[dict]:
    """
    The caller's apartments in which `user_id` is a resident. Empty when
    there are none, so the answer never reveals memberships elsewhere.
    """
    return [
        _build_apartment_dict(membership.apartment)
        for _, membership in membership_repo.list_residents_managed_by(
            manager_id, session, user_id=user_id
        )
    ]
