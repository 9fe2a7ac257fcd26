"""
routes/auth.py — Signup and login.

Endpoints (url_prefix=/v1/user, no auth required):
  POST   /signup  → 201
  POST   /login   → 200
"""

from __future__ import annotations

from flask import Blueprint, request

from backend.app.extensions import db
from backend.app.routes import ok
from backend.app.schemas.user_schema import LoginSchema, SignupSchema
from backend.app.services import auth_service
from backend.app.services.after_commit import commit

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/signup", methods=["POST"])
def signup():
    """POST /v1/user/signup — Create account; return user + token."""
    data = SignupSchema().load(request.get_json(force=True, silent=True) or {})
    result = auth_service.register_user(
        username=data["username"],
        email=data["email"],
        password=data["password"],
        user_type=data["user_type"],
        full_name=data["full_name"],
        phone=data["phone"],
        telegram_user=data["telegram_user"],
        session=db.session,
    )
    commit(db.session)
    return ok(result, "User created successfully.", 201)


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /v1/user/login — Authenticate; return token and profile summary."""
    data = LoginSchema().load(request.get_json(force=True, silent=True) or {})
    result = auth_service.login_user(
        username=data["username"],
        password=data["password"],
        session=db.session,
    )
    return ok(result, "Login successful.")
