"""
services/invitation_service.py — Issue and redeem apartment invitations.

Issue:
  manager check → resolve receiver by telegram username → not already a
  member → supersede older active invitations for the same pair → mint
  token (32 random bytes, hex) → store with TTL (pending) → chat delivery →
  pending → notified on success.
  Delivery failure keeps the invitation valid; the caller gets
  `delivered: false` and an INVITATION_NOT_DELIVERED warning.

Redeem:
  look up token → membership pre-check → compare-and-set pending|notified →
  consumed in the volatile store → insert membership. If the insert or the
  route's commit fails, the token is put back to its previous status so it
  can be used again.
  The CAS serialises racing redemptions: one wins, the rest see `consumed`
  and get Gone.

The store raises InvitationMissing / InvitationStateError; this module
classifies them as NotFound / Gone.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode, WarningCode
from backend.app.models.user import User
from backend.app.repositories import membership_repo
from backend.app.repositories.invitation_store import (
    ACTIVE_STATUSES,
    CONSUMED,
    EXPIRED,
    NOTIFIED,
    PENDING,
    InvitationMissing,
    InvitationStateError,
)
from backend.app.services import authz
from backend.app.services.after_commit import on_commit_failure
from backend.app.sidecars.notifier import NotificationError, chat_target
from backend.app.validators import is_valid_telegram, normalize_telegram_username

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _mint_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def build_invite_url(app_base_url: str, token: str) -> str:
    return f"{app_base_url.rstrip('/')}/apartment/join?token={token}"


def _store_failure(action: str, exc: Exception) -> AppError:
    logger.error("Invitation store failure while %s: %s", action, exc)
    return AppError(
        ErrorCode.INTERNAL_ERROR,
        f"Could not {action} the invitation. Please try again later.",
        500,
    )


def _resolve_receiver(receiver_username: str, session: Session) -> User:
    username = normalize_telegram_username(receiver_username)
    if not is_valid_telegram(username):
        raise AppError(
            ErrorCode.INVALID_TELEGRAM_USERNAME,
            "Telegram usernames are 5-32 characters of letters, digits and underscores.",
            400,
            field="telegram_username",
        )

    receiver = session.execute(
        select(User).where(User.telegram_user == username)
    ).scalar_one_or_none()
    if receiver is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"No user has linked the telegram username '{username}'.",
            404,
            field="telegram_username",
        )
    return receiver


def issue_invitation(
        manager_id: int,
        apartment_id: int,
        receiver_username: str,
        session: Session,
        store,
        notifier,
        app_base_url: str,
) -> tuple[dict, list[dict]]:
    """
    Creates an invitation and tries to deliver it over chat.

    Raises:
      AppError(APARTMENT_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)              — caller does not manage the apartment
      AppError(INVALID_TELEGRAM_USERNAME, 400)
      AppError(USER_NOT_FOUND, 404)         — no user with that telegram username
      AppError(ALREADY_MEMBER, 409)
      AppError(INTERNAL_ERROR, 500)         — volatile store failure

    Returns: (invitation dict, warnings list)
    """
    apartment = authz.require_manager(manager_id, apartment_id, session)
    receiver = _resolve_receiver(receiver_username, session)

    if authz.is_member(receiver.id, apartment_id, session):
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"User '{receiver.telegram_user}' is already a member of this apartment.",
            409,
        )

    now = _now()
    try:
        for previous in store.active_for(apartment_id, receiver.telegram_user, now=now):
            try:
                store.transition(previous.token, ACTIVE_STATUSES, EXPIRED, now=now)
            except (InvitationMissing, InvitationStateError):
                continue
        invitation = store.create(
            token=_mint_token(),
            sender_id=manager_id,
            receiver_username=receiver.telegram_user,
            apartment_id=apartment_id,
            now=now,
        )
    except (RedisError, ValueError) as exc:
        raise _store_failure("store", exc) from exc

    invite_url = build_invite_url(app_base_url, invitation.token)
    warnings: list[dict] = []
    delivered = False
    target = chat_target(receiver.telegram_chat_id, receiver.telegram_user)
    try:
        notifier.send_invitation(invitation, target, apartment.name, invite_url)
        delivered = True
    except NotificationError as exc:
        logger.warning(
            "Invitation for apartment %s to %s not delivered: %s",
            apartment_id, receiver.telegram_user, exc,
        )
        warnings.append({
            "code": WarningCode.INVITATION_NOT_DELIVERED,
            "message": "The invitation was created but the chat message could not be delivered.",
        })

    status = invitation.status
    if delivered:
        try:
            status = store.transition(invitation.token, {PENDING}, NOTIFIED).status
        except (InvitationMissing, InvitationStateError) as exc:
            logger.info("Invitation not marked notified: %s", exc)
        except RedisError as exc:
            logger.warning("Failed to mark invitation notified: %s", exc)

    return {
        "token": invitation.token,
        "invite_url": invite_url,
        "expires_at": invitation.expires_at.isoformat(),
        "apartment_id": apartment_id,
        "receiver_username": receiver.telegram_user,
        "status": status,
        "delivered": delivered,
    }, warnings


def redeem_invitation(user_id: int, token: str, session: Session, store) -> dict:
    """
    Consumes the invitation and makes the caller a resident of its apartment.

    Raises:
      AppError(INVITATION_NOT_FOUND, 404) — no such token
      AppError(INVITATION_GONE, 410)      — expired or already consumed
      AppError(ALREADY_MEMBER, 409)
      AppError(INTERNAL_ERROR, 500)       — volatile store failure
    """
    now = _now()
    try:
        invitation = store.get(token)
    except RedisError as exc:
        raise _store_failure("read", exc) from exc

    if invitation is None:
        raise AppError(
            ErrorCode.INVITATION_NOT_FOUND,
            "This invitation does not exist.",
            404,
        )

    current = invitation.effective_status(now)
    if current not in ACTIVE_STATUSES:
        raise _gone(current)

    apartment = authz.get_apartment_or_404(invitation.apartment_id, session)
    if authz.is_member(user_id, invitation.apartment_id, session):
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            "You are already a member of this apartment.",
            409,
        )

    try:
        claimed = store.transition(token, ACTIVE_STATUSES, CONSUMED, now=now)
    except InvitationMissing:
        raise AppError(
            ErrorCode.INVITATION_NOT_FOUND,
            "This invitation does not exist.",
            404,
        )
    except InvitationStateError as exc:
        raise _gone(exc.status)
    except RedisError as exc:
        raise _store_failure("consume", exc) from exc

    try:
        membership_repo.add(user_id, invitation.apartment_id, session)
    except IntegrityError as exc:
        _restore(store, token, previous_status=invitation.status)
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            "You are already a member of this apartment.",
            409,
        ) from exc
    except Exception:
        _restore(store, token, previous_status=invitation.status)
        raise

    on_commit_failure(session, _restore, store, token, previous_status=invitation.status)

    logger.info(
        "User %s joined apartment %s with invitation from %s",
        user_id, claimed.apartment_id, claimed.sender_id,
    )
    return {
        "apartment_id": apartment.id,
        "apartment_name": apartment.name,
    }


def _gone(status: str) -> AppError:
    return AppError(
        ErrorCode.INVITATION_GONE,
        f"This invitation is no longer valid ({status}).",
        410,
    )


def _restore(store, token: str, previous_status: str) -> None:
    try:
        store.transition(token, {CONSUMED}, previous_status)
    except (InvitationMissing, InvitationStateError, RedisError) as exc:
        logger.error("Could not restore invitation after failed join: %s", exc)
