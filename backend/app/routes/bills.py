"""
routes/bills.py — Bill reads and payments for the calling user.

Endpoints (url_prefix=/v1/bills, auth required):
  GET    /?id=          → 200  bill + time-limited image URL (member of apartment)
  POST   /pay           → 200  PayBatch (resident accounts)
  GET    /unpaid        → 200
  GET    /status?id=    → 200
  GET    /history       → 200
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, request

from backend.app.errors import AppError, ErrorCode
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.enums import UserRole
from backend.app.routes import ok, sidecar
from backend.app.schemas.bill_schema import BillIdQuerySchema, PayBatchSchema
from backend.app.services import bill_service
from backend.app.services.after_commit import commit

bills_bp = Blueprint("bills", __name__)


@bills_bp.route("", methods=["GET"])
@require_auth
def get_bill():
    query = BillIdQuerySchema().load(request.args.to_dict())
    result = bill_service.get_bill(
        bill_id=query["id"],
        caller_id=g.user_id,
        session=db.session,
        images=sidecar("image_store"),
    )
    return ok(result, "Bill retrieved.")


@bills_bp.route("/pay", methods=["POST"])
@require_auth
def pay_bills():
    """
    POST /v1/bills/pay — body {bill_ids?, idempotency_key}.
    Retrying with the same key never charges twice.

    Resident accounts only, unless managers share bills
    (INCLUDE_MANAGER_IN_SPLIT), in which case they settle their own rows too.
    """
    if g.role != UserRole.RESIDENT and not current_app.config.get("INCLUDE_MANAGER_IN_SPLIT"):
        raise AppError(
            ErrorCode.ROLE_NOT_ALLOWED,
            "Your account type cannot use this endpoint.",
            401,
        )
    data = PayBatchSchema().load(request.get_json(force=True, silent=True) or {})
    result = bill_service.pay_batch(
        user_id=g.user_id,
        idempotency_key=data["idempotency_key"],
        bill_ids=data["bill_ids"],
        session=db.session,
        gateway=sidecar("payment_gateway"),
    )
    commit(db.session)
    return ok(result, "Payment successful.")


@bills_bp.route("/unpaid", methods=["GET"])
@require_auth
def unpaid_bills():
    result = bill_service.get_unpaid_bills(user_id=g.user_id, session=db.session)
    return ok(result, "Unpaid bills retrieved.")


@bills_bp.route("/status", methods=["GET"])
@require_auth
def bill_status():
    query = BillIdQuerySchema().load(request.args.to_dict())
    result = bill_service.get_bill_with_payment_status(
        user_id=g.user_id,
        bill_id=query["id"],
        session=db.session,
    )
    return ok(result, "Bill status retrieved.")


@bills_bp.route("/history", methods=["GET"])
@require_auth
def payment_history():
    result = bill_service.get_payment_history(user_id=g.user_id, session=db.session)
    return ok(result, "Payment history retrieved.")
