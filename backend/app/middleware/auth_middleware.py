"""
middleware/auth_middleware.py — JWT authentication and role gating.

@require_auth:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Decodes and verifies the JWT signature
  3. Checks token expiry
  4. Attaches user_id (int) and role (UserRole) to flask.g
  5. Raises the matching 401 AppError if any step fails

@require_role(*roles) runs the same sequence and then rejects callers whose
token role is not listed, also with 401 (ROLE_NOT_ALLOWED).

Strict responsibility boundary:
  - This middleware knows who the caller is and what role their account has.
  - Whether the caller manages a given apartment or owns a given payment is
    a service decision (403). Middleware = 401, service = 403.
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from backend.app.errors import AppError, ErrorCode
from backend.app.models.enums import UserRole


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces JWT authentication.

    Usage:
        @bp.route("/profile")
        @require_auth
        def profile():
            user_id = g.user_id  # always an int when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_role(*roles: UserRole) -> Callable:
    """Like require_auth, but only for accounts whose role is in `roles`."""
    allowed = frozenset(roles)

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            _authenticate_request()
            if g.role not in allowed:
                raise AppError(
                    ErrorCode.ROLE_NOT_ALLOWED,
                    "Your account type cannot use this endpoint.",
                    401,
                )
            return f(*args, **kwargs)

        return decorated

    return decorator


def _authenticate_request() -> None:
    """
    Performs the full JWT authentication sequence and sets flask.g.user_id
    and flask.g.role. Raises AppError on any failure.
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    try:
        payload = jwt.decode(
            parts[1],
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Log in again to obtain a new one.",
            401,
        )
    except jwt.InvalidTokenError:
        # bad signature, malformed token, missing claims
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    try:
        user_id = int(payload["sub"])
        role = UserRole(payload.get("role"))
    except (TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token does not carry a valid user id and role.",
            401,
        )

    # Services never read flask.g; routes pass these along as plain values.
    g.user_id = user_id
    g.role = role
