"""
routes/resident.py — Self-profile and apartment membership for any account.

Endpoints (url_prefix=/v1/resident, auth required):
  GET    /profile                         → 200
  PUT    /profile                         → 200
  DELETE /profile                         → 200
  GET    /apartments                      → 200
  POST   /apartment/join?token=...        → 200
  POST   /apartment/leave?apartment_id=.. → 200
"""

from __future__ import annotations

from flask import Blueprint, g, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.routes import ok, sidecar
from backend.app.schemas.apartment_schema import JoinQuerySchema, LeaveQuerySchema
from backend.app.schemas.user_schema import UpdateProfileSchema
from backend.app.services import apartment_service, invitation_service, user_service
from backend.app.services.after_commit import commit

resident_bp = Blueprint("resident", __name__)


@resident_bp.route("/profile", methods=["GET"])
@require_auth
def get_profile():
    result = user_service.get_profile(user_id=g.user_id, session=db.session)
    return ok(result, "Profile retrieved.")


@resident_bp.route("/profile", methods=["PUT"])
@require_auth
def update_profile():
    """PUT /v1/resident/profile — only the fields sent are changed."""
    data = UpdateProfileSchema().load(request.get_json(force=True, silent=True) or {})
    result = user_service.update_profile(
        user_id=g.user_id,
        session=db.session,
        **data,
    )
    commit(db.session)
    return ok(result, "Profile updated.")


@resident_bp.route("/profile", methods=["DELETE"])
@require_auth
def delete_profile():
    user_service.delete_account(user_id=g.user_id, session=db.session)
    commit(db.session)
    return ok({"deleted": True, "user_id": g.user_id}, "Account deleted.")


@resident_bp.route("/apartments", methods=["GET"])
@require_auth
def list_my_apartments():
    result = apartment_service.list_user_apartments(user_id=g.user_id, session=db.session)
    return ok(result, "Apartments retrieved.")


@resident_bp.route("/apartment/join", methods=["POST"])
@require_auth
def join_apartment():
    """POST /v1/resident/apartment/join?token=... — Redeem an invitation."""
    query = JoinQuerySchema().load(request.args.to_dict())
    result = invitation_service.redeem_invitation(
        user_id=g.user_id,
        token=query["token"],
        session=db.session,
        store=sidecar("invitation_store"),
    )
    commit(db.session)
    return ok(result, f"You joined {result['apartment_name']}.")


@resident_bp.route("/apartment/leave", methods=["POST"])
@require_auth
def leave_apartment():
    query = LeaveQuerySchema().load(request.args.to_dict())
    apartment_service.leave_apartment(
        apartment_id=query["apartment_id"],
        user_id=g.user_id,
        session=db.session,
    )
    commit(db.session)
    return ok({"apartment_id": query["apartment_id"]}, "You left the apartment.")
