"""
services/auth_service.py — Signup, login and access-token issuance.

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or HTTP status codes beyond AppError
  - current_app.config is read ONLY for the signing secret, token TTL and
    bcrypt cost

Token design:
  - JWT, HS256, sub = user_id (str), role = "manager" | "resident"
  - TTL from JWT_ACCESS_TOKEN_EXPIRES
  - The middleware recovers both user id and role from the token alone.

Password storage:
  - Hashed with bcrypt (cost factor from config BCRYPT_LOG_ROUNDS, default 12)
  - Raw password is never stored, never logged
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.enums import UserRole
from backend.app.models.user import User


# ── Private helpers ────────────────────────────────────────────────────────

def _create_access_token(user_id: int, role: UserRole) -> str:
    """
    Creates a signed JWT access token.
    Payload: sub (user_id as str), role, iat, exp, jti.
    """
    now = datetime.now(timezone.utc)
    expiry = now + current_app.config["JWT_ACCESS_TOKEN_EXPIRES"]
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "iat": now,
        "exp": expiry,
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def _hash_password(password: str) -> str:
    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. Never includes the password hash."""
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "phone": user.phone,
        "full_name": user.full_name,
        "user_type": user.role.value,
        "telegram_user": user.telegram_user,
        "telegram_connected": user.telegram_connected,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _ensure_unique(
        session: Session,
        username: str,
        email: str,
        telegram_user: str | None,
) -> None:
    if session.execute(
        select(User.id).where(User.username == username)
    ).first() is not None:
        raise AppError(
            ErrorCode.DUPLICATE_USERNAME,
            f"The username '{username}' is already taken.",
            409,
            field="username",
        )

    if session.execute(
        select(User.id).where(User.email == email)
    ).first() is not None:
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            409,
            field="email",
        )

    if telegram_user and session.execute(
        select(User.id).where(User.telegram_user == telegram_user)
    ).first() is not None:
        raise AppError(
            ErrorCode.DUPLICATE_TELEGRAM_USER,
            f"The telegram username '{telegram_user}' is already linked to another account.",
            409,
            field="telegram_user",
        )


# ── Public service functions ───────────────────────────────────────────────

def register_user(
        username: str,
        email: str,
        password: str,
        user_type: UserRole,
        session: Session,
        full_name: str = "",
        phone: str | None = None,
        telegram_user: str | None = None,
) -> dict:
    """
    Creates a new user account and issues an access token.

    `telegram_user` arrives already normalised by the schema.

    Raises:
      AppError(DUPLICATE_USERNAME, 409)
      AppError(DUPLICATE_EMAIL, 409)
      AppError(DUPLICATE_TELEGRAM_USER, 409)

    Returns: {"user": {...}, "token": "..."}
    """
    telegram_user = telegram_user or None
    _ensure_unique(session, username, email, telegram_user)

    user = User(
        username=username,
        email=email,
        password_hash=_hash_password(password),
        full_name=full_name or "",
        phone=phone or None,
        role=user_type,
        telegram_user=telegram_user,
        telegram_chat_id=0,
    )
    session.add(user)
    session.flush()  # populate user.id before signing the token

    return {
        "user": build_user_dict(user),
        "token": _create_access_token(user.id, user.role),
    }


def login_user(
        username: str,
        password: str,
        session: Session,
) -> dict:
    """
    Validates credentials and issues a new access token.

    Raises:
      AppError(INVALID_CREDENTIALS, 401) — username not found or password wrong.
      The same error is used for both to avoid username enumeration.
    """
    user = session.execute(
        select(User).where(User.username == username)
    ).scalar_one_or_none()

    if user is None or not bcrypt.checkpw(
            password.encode("utf-8"),
            user.password_hash.encode("utf-8"),
    ):
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "The username or password is incorrect.",
            401,
        )

    return {
        "token": _create_access_token(user.id, user.role),
        "user_id": user.id,
        "user_type": user.role.value,
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "telegram": {
            "username": user.telegram_user or "",
            "connected": user.telegram_connected,
        },
    }
