"""
routes/manager.py — Apartment administration, invitations and bill management.

Every route is gated to manager accounts (401 ROLE_NOT_ALLOWED otherwise);
whether the caller manages *this* apartment is checked by the service (403).

Endpoints (url_prefix=/v1/manager):
  POST   /apartment/create                     → 201
  GET    /apartment/get?id=                    → 200
  PUT    /apartment/update                     → 200
  DELETE /apartment/delete?id=                 → 200
  GET    /apartment/residents?id=              → 200
  POST   /apartment/invite                     → 201
  GET    /apartment/bills?id=                  → 200
  POST   /apartment/<id>/bills  (multipart)    → 201
  POST   /apartment/<id>/bills/divide          → 200
  PUT    /bill/update                          → 200
  DELETE /bill/delete?id=                      → 200
  GET    /user/get-all                         → 200
  GET    /user/get/<user_id>                   → 200
  DELETE /user/delete/<user_id>                → 200
  GET    /apartments/get-all/resident/<user_id> → 200

The /user routes only reach residents of apartments the caller manages.
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_role
from backend.app.models.enums import UserRole
from backend.app.routes import ok, sidecar
from backend.app.schemas.apartment_schema import (
    ApartmentIdQuerySchema,
    CreateApartmentSchema,
    InviteSchema,
    UpdateApartmentSchema,
)
from backend.app.schemas.bill_schema import (
    BillIdQuerySchema,
    CreateBillSchema,
    DivideBillsSchema,
    UpdateBillSchema,
)
from backend.app.services import (
    apartment_service,
    bill_service,
    invitation_service,
    user_service,
)
from backend.app.services.after_commit import commit

manager_bp = Blueprint("manager", __name__)

manager_only = require_role(UserRole.MANAGER)


# ── Apartments ─────────────────────────────────────────────────────────────

@manager_bp.route("/apartment/create", methods=["POST"])
@manager_only
def create_apartment():
    data = CreateApartmentSchema().load(request.get_json(force=True, silent=True) or {})
    result = apartment_service.create_apartment(
        manager_id=g.user_id,
        name=data["name"],
        units_count=data["units_count"],
        address=data["address"],
        session=db.session,
    )
    commit(db.session)
    return ok(result, "Apartment created.", 201)


@manager_bp.route("/apartment/get", methods=["GET"])
@manager_only
def get_apartment():
    query = ApartmentIdQuerySchema().load(request.args.to_dict())
    result = apartment_service.get_apartment(
        apartment_id=query["id"],
        caller_id=g.user_id,
        session=db.session,
    )
    return ok(result, "Apartment retrieved.")


@manager_bp.route("/apartment/update", methods=["PUT"])
@manager_only
def update_apartment():
    data = UpdateApartmentSchema().load(request.get_json(force=True, silent=True) or {})
    apartment_id = data.pop("id")
    result = apartment_service.update_apartment(
        apartment_id=apartment_id,
        caller_id=g.user_id,
        session=db.session,
        **data,
    )
    commit(db.session)
    return ok(result, "Apartment updated.")


@manager_bp.route("/apartment/delete", methods=["DELETE"])
@manager_only
def delete_apartment():
    """DELETE /v1/manager/apartment/delete?id= — bills, payments and memberships go too."""
    query = ApartmentIdQuerySchema().load(request.args.to_dict())
    apartment_service.delete_apartment(
        apartment_id=query["id"],
        caller_id=g.user_id,
        session=db.session,
        images=sidecar("image_store"),
    )
    commit(db.session)
    return ok({"deleted": True, "apartment_id": query["id"]}, "Apartment deleted.")


@manager_bp.route("/apartment/residents", methods=["GET"])
@manager_only
def list_residents():
    query = ApartmentIdQuerySchema().load(request.args.to_dict())
    result = apartment_service.list_residents(
        apartment_id=query["id"],
        caller_id=g.user_id,
        session=db.session,
    )
    return ok(result, "Residents retrieved.")


@manager_bp.route("/apartment/invite", methods=["POST"])
@manager_only
def invite_resident():
    """
    POST /v1/manager/apartment/invite — body {apartment_id, telegram_username}.
    A failed chat delivery still returns 201 with delivered=false and a warning.
    """
    data = InviteSchema().load(request.get_json(force=True, silent=True) or {})
    result, warnings = invitation_service.issue_invitation(
        manager_id=g.user_id,
        apartment_id=data["apartment_id"],
        receiver_username=data["telegram_username"],
        session=db.session,
        store=sidecar("invitation_store"),
        notifier=sidecar("notifier"),
        app_base_url=current_app.config["APP_BASE_URL"],
    )
    message = (
        "Invitation sent."
        if result["delivered"]
        else "Invitation created but not delivered."
    )
    return ok(result, message, 201, warnings)


# ── Bills ──────────────────────────────────────────────────────────────────

@manager_bp.route("/apartment/bills", methods=["GET"])
@manager_only
def list_apartment_bills():
    query = ApartmentIdQuerySchema().load(request.args.to_dict())
    result = bill_service.list_apartment_bills(
        apartment_id=query["id"],
        caller_id=g.user_id,
        session=db.session,
    )
    return ok(result, "Bills retrieved.")


@manager_bp.route("/apartment/<int:apartment_id>/bills", methods=["POST"])
@manager_only
def create_bill(apartment_id: int):
    """
    POST /v1/manager/apartment/<id>/bills — multipart form with an optional
    `image` file part. Divides the bill across residents unless divide=false.
    """
    data = CreateBillSchema().load(request.form.to_dict())

    image = None
    upload = request.files.get("image")
    if upload is not None and upload.filename:
        image = (upload.read(), upload.filename)

    result, warnings = bill_service.create_bill(
        manager_id=g.user_id,
        apartment_id=apartment_id,
        bill_type=data["bill_type"],
        total_amount=data["total_amount"],
        due_date=data["due_date"],
        billing_deadline=data["billing_deadline"],
        description=data["description"],
        divide=data["divide"],
        image=image,
        session=db.session,
        images=sidecar("image_store"),
        notifier=sidecar("notifier"),
        include_manager=current_app.config.get("INCLUDE_MANAGER_IN_SPLIT", False),
    )
    commit(db.session)
    message = "Bill created and divided." if data["divide"] else "Bill created."
    return ok(result, message, 201, warnings)


@manager_bp.route("/apartment/<int:apartment_id>/bills/divide", methods=["POST"])
@manager_only
def divide_bills(apartment_id: int):
    data = DivideBillsSchema().load(request.get_json(force=True, silent=True) or {})
    result, warnings = bill_service.divide_undivided_bills(
        manager_id=g.user_id,
        apartment_id=apartment_id,
        bill_type=data["bill_type"],
        session=db.session,
        notifier=sidecar("notifier"),
        include_manager=current_app.config.get("INCLUDE_MANAGER_IN_SPLIT", False),
    )
    commit(db.session)
    return ok(result, f"{len(result['divided_bills'])} bill(s) divided.", 200, warnings)


@manager_bp.route("/bill/update", methods=["PUT"])
@manager_only
def update_bill():
    data = UpdateBillSchema().load(request.get_json(force=True, silent=True) or {})
    bill_id = data.pop("id")
    result = bill_service.update_bill(
        manager_id=g.user_id,
        bill_id=bill_id,
        fields=data,
        session=db.session,
    )
    commit(db.session)
    return ok(result, "Bill updated.")


@manager_bp.route("/bill/delete", methods=["DELETE"])
@manager_only
def delete_bill():
    query = BillIdQuerySchema().load(request.args.to_dict())
    bill_service.delete_bill(
        manager_id=g.user_id,
        bill_id=query["id"],
        session=db.session,
        images=sidecar("image_store"),
    )
    commit(db.session)
    return ok({"deleted": True, "bill_id": query["id"]}, "Bill deleted.")


# ── Residents of the caller's apartments ───────────────────────────────────

@manager_bp.route("/user/get-all", methods=["GET"])
@manager_only
def list_managed_residents():
    result = user_service.list_managed_residents(manager_id=g.user_id, session=db.session)
    return ok(result, "Residents retrieved.")


@manager_bp.route("/user/get/<int:user_id>", methods=["GET"])
@manager_only
def get_managed_resident(user_id: int):
    result = user_service.get_managed_resident(
        manager_id=g.user_id,
        user_id=user_id,
        session=db.session,
    )
    return ok(result, "Resident retrieved.")


@manager_bp.route("/user/delete/<int:user_id>", methods=["DELETE"])
@manager_only
def remove_managed_resident(user_id: int):
    """
    DELETE /v1/manager/user/delete/<user_id> — removes the resident from the
    caller's apartments. The account is not deleted.
    """
    apartment_ids = user_service.remove_managed_resident(
        manager_id=g.user_id,
        user_id=user_id,
        session=db.session,
    )
    commit(db.session)
    return ok(
        {"user_id": user_id, "removed_from": apartment_ids},
        "Resident removed from your apartments.",
    )


@manager_bp.route("/apartments/get-all/resident/<int:user_id>", methods=["GET"])
@manager_only
def list_resident_apartments(user_id: int):
    result = apartment_service.list_resident_apartments(
        manager_id=g.user_id,
        user_id=user_id,
        session=db.session,
    )
    return ok(result, "Apartments retrieved.")
