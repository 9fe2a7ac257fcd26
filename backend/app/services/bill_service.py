"""
services/bill_service.py — Bills, their division into payments, and settlement.

Layer rules:
  - Services receive a SQLAlchemy Session and flush; routes commit.
  - Collaborators (image store, notifier, payment gateway) arrive as
    arguments so unit tests can pass mocks.
  - Monetary arithmetic is Decimal/int cents only. Never float.

Division rule:
  share   = floor(total_cents / n)
  residual = total_cents - share * n         (0 <= residual < n)
  The resident with the lowest user_id receives share + residual, everybody
  else receives share. Σ shares == total exactly.
  total_amount itself is quantised to cents with ROUND_HALF_EVEN first.

Ordering inside create_bill(): image upload → bill insert → payment rows
(one SAVEPOINT each, failures collected as a warning) → notifications.
Notifications and image deletions are queued with after_commit() and only
run once the route's commit has succeeded.

Gateway idempotency keys are namespaced by user, so two residents who pick
the same client key never collide at the gateway.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode, WarningCode
from backend.app.models.bill import Bill
from backend.app.models.enums import PAYABLE_PAYMENT_STATUSES, BillType, PaymentStatus
from backend.app.models.user import User
from backend.app.repositories import bill_repo, membership_repo, payment_repo
from backend.app.services import authz
from backend.app.services.after_commit import after_commit
from backend.app.sidecars.image_store import ImageNotFound, ImageStoreError
from backend.app.sidecars.notifier import NotificationError, chat_target
from backend.app.sidecars.payment_gateway import PaymentGatewayError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


# ── Money helpers ──────────────────────────────────────────────────────────

def _to_cents(amount: Decimal) -> int:
    return int((amount.quantize(CENT, rounding=ROUND_HALF_EVEN) * 100).to_integral_value())


def _from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def _money(amount: Decimal | None) -> str:
    return str((amount or ZERO).quantize(CENT))


def compute_shares(total_amount: Decimal, user_ids: list[int]) -> dict[int, Decimal]:
    """
    Splits `total_amount` across `user_ids`.

    Every user gets floor(total / n) cents; the leftover cents all go to
    the lowest user id. The returned amounts sum to the cent-quantised total.

    >>> compute_shares(Decimal("100.01"), [4, 2, 3])
    {2: Decimal('33.35'), 3: Decimal('33.33'), 4: Decimal('33.33')}
    """
    if not user_ids:
        raise ValueError("cannot divide a bill across zero residents")

    ordered = sorted(set(user_ids))
    total_cents = _to_cents(total_amount)
    share, residual = divmod(total_cents, len(ordered))

    shares = {user_id: _from_cents(share) for user_id in ordered}
    shares[ordered[0]] = _from_cents(share + residual)

    if sum(shares.values()) != _from_cents(total_cents):
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            "Bill division produced an inconsistent total.",
            500,
        )
    return shares


# ── Private helpers ────────────────────────────────────────────────────────

def _get_bill_or_404(bill_id: int, session: Session) -> Bill:
    bill = bill_repo.get(bill_id, session)
    if bill is None:
        raise AppError(
            ErrorCode.BILL_NOT_FOUND,
            f"Bill {bill_id} not found.",
            404,
        )
    return bill


def _snapshot_residents(
        apartment_id: int,
        session: Session,
        include_manager: bool,
) -> list[User]:
    """Payers for a division: residents, plus the manager when the policy says so."""
    return [
        user
        for user, _ in membership_repo.list_members(
            apartment_id, session, include_manager=include_manager
        )
    ]


def serialize_bill(bill: Bill, image_url: str | None = None) -> dict:
    data = {
        "id": bill.id,
        "apartment_id": bill.apartment_id,
        "type": bill.bill_type.value,
        "total_amount": _money(bill.total_amount),
        "due_date": bill.due_date.isoformat(),
        "billing_deadline": bill.billing_deadline.isoformat() if bill.billing_deadline else None,
        "description": bill.description,
        "has_image": bool(bill.image_key),
        "created_at": bill.created_at.isoformat() if bill.created_at else None,
    }
    if image_url is not None:
        data["image_url"] = image_url
    return data


def _serialize_payment(payment) -> dict:
    return {
        "id": payment.id,
        "bill_id": payment.bill_id,
        "user_id": payment.user_id,
        "amount": _money(payment.amount),
        "status": payment.status.value,
        "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
        "payment_reference": payment.payment_reference,
    }


def _delete_image_quietly(images, key: str | None) -> None:
    if not key or images is None:
        return
    try:
        images.delete(key)
    except ImageStoreError as exc:
        logger.warning("Failed to delete bill image %s: %s", key, exc)


def _notify_quietly(notifier, target: str, bill: Bill, amount: Decimal, user_id: int) -> None:
    try:
        notifier.send_bill_notification(target, bill, amount)
    except NotificationError as exc:
        logger.warning("Bill %s notification to user %s failed: %s", bill.id, user_id, exc)


def gateway_key(user_id: int, idempotency_key: str) -> str:
    """The key the gateway deduplicates on: one namespace per payer."""
    return f"{user_id}:{idempotency_key}"


def _divide(
        bill: Bill,
        residents: list[User],
        session: Session,
        notifier,
) -> list[int]:
    """
    Inserts one pending payment row per resident and queues a notification
    for each resident that got a row. Returns the user ids whose row failed.
    """
    shares = compute_shares(bill.total_amount, [user.id for user in residents])
    by_id = {user.id: user for user in residents}

    created: list[tuple[User, Decimal]] = []
    failed: list[int] = []
    for user_id, amount in shares.items():
        try:
            with session.begin_nested():
                payment_repo.add(bill.id, user_id, amount, session)
        except SQLAlchemyError as exc:
            logger.warning(
                "Payment row for user %s on bill %s failed: %s", user_id, bill.id, exc
            )
            failed.append(user_id)
            continue
        created.append((by_id[user_id], amount))

    for user, amount in created:
        target = chat_target(user.telegram_chat_id, user.telegram_user)
        if target is None or notifier is None:
            continue
        after_commit(session, _notify_quietly, notifier, target, bill, amount, user.id)

    return failed


def _rows_failed_warning(failed: list[int]) -> dict:
    return {
        "code": WarningCode.PAYMENT_ROWS_FAILED,
        "message": "Payment rows could not be created for some residents.",
        "user_ids": failed,
    }


# ── Public service functions ───────────────────────────────────────────────

def create_bill(
        manager_id: int,
        apartment_id: int,
        bill_type: BillType,
        total_amount: Decimal,
        due_date: date,
        session: Session,
        images,
        notifier,
        include_manager: bool = False,
        billing_deadline: date | None = None,
        description: str = "",
        image: tuple[bytes, str] | None = None,
        divide: bool = True,
) -> tuple[dict, list[dict]]:
    """
    Creates a bill and, unless `divide` is False, divides it into pending
    payment rows for the current resident set.

    Raises:
      AppError(APARTMENT_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)       — caller does not manage the apartment
      AppError(NO_RESIDENTS, 409)    — dividing with nobody to pay
      AppError(INTERNAL_ERROR, 500)  — bill insert failed

    Returns: ({bill_id, residents_count, amount_per_person, image_uploaded,
               failed_user_ids, bill}, warnings)
    """
    authz.require_manager(manager_id, apartment_id, session)

    residents: list[User] = []
    if divide:
        residents = _snapshot_residents(apartment_id, session, include_manager)
        if not residents:
            raise AppError(
                ErrorCode.NO_RESIDENTS,
                "This apartment has no residents to divide the bill between.",
                409,
            )

    image_key = None
    if image is not None:
        data, filename = image
        try:
            image_key = images.save(data, filename)
        except ImageStoreError as exc:
            logger.warning("Bill image upload failed for apartment %s: %s", apartment_id, exc)

    bill = Bill(
        apartment_id=apartment_id,
        bill_type=bill_type,
        total_amount=total_amount.quantize(CENT, rounding=ROUND_HALF_EVEN),
        due_date=due_date,
        billing_deadline=billing_deadline,
        description=description or "",
        image_key=image_key,
    )
    try:
        bill_repo.add(bill, session)
    except SQLAlchemyError as exc:
        session.rollback()
        _delete_image_quietly(images, image_key)
        logger.error("Bill insert failed for apartment %s: %s", apartment_id, exc)
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            "The bill could not be saved.",
            500,
        ) from exc

    warnings: list[dict] = []
    failed: list[int] = []
    amount_per_person = None
    if divide:
        failed = _divide(bill, residents, session, notifier)
        if failed:
            warnings.append(_rows_failed_warning(failed))
        amount_per_person = _from_cents(_to_cents(bill.total_amount) // len(residents))

    return {
        "bill_id": bill.id,
        "residents_count": len(residents),
        "amount_per_person": _money(amount_per_person) if amount_per_person is not None else None,
        "image_uploaded": image_key is not None,
        "failed_user_ids": failed,
        "bill": serialize_bill(bill),
    }, warnings


def divide_undivided_bills(
        manager_id: int,
        apartment_id: int,
        session: Session,
        notifier,
        include_manager: bool = False,
        bill_type: BillType | None = None,
) -> tuple[dict, list[dict]]:
    """
    Divides every bill of the apartment (optionally of one type) that has no
    payment rows yet, against one resident snapshot.

    Raises:
      AppError(FORBIDDEN, 403), AppError(NO_RESIDENTS, 409)
    """
    authz.require_manager(manager_id, apartment_id, session)
    residents = _snapshot_residents(apartment_id, session, include_manager)
    if not residents:
        raise AppError(
            ErrorCode.NO_RESIDENTS,
            "This apartment has no residents to divide bills between.",
            409,
        )

    divided: list[int] = []
    failed_bills: list[int] = []
    warnings: list[dict] = []
    for bill in bill_repo.list_undivided(apartment_id, session, bill_type=bill_type):
        failed = _divide(bill, residents, session, notifier)
        if len(failed) == len(residents):
            failed_bills.append(bill.id)
            warnings.append({
                "code": WarningCode.BILL_NOT_DIVIDED,
                "message": f"Bill {bill.id} could not be divided.",
                "bill_id": bill.id,
            })
            continue
        divided.append(bill.id)
        if failed:
            warnings.append({**_rows_failed_warning(failed), "bill_id": bill.id})

    return {
        "divided_bills": divided,
        "failed_bills": failed_bills,
        "residents_count": len(residents),
    }, warnings


def get_bill(bill_id: int, caller_id: int, session: Session, images) -> dict:
    """
    Bill fields plus a time-limited image URL. A missing or unreachable
    image degrades to image_url = "".
    """
    bill = _get_bill_or_404(bill_id, session)
    authz.require_member(caller_id, bill.apartment_id, session)

    image_url = ""
    if bill.image_key:
        try:
            image_url = images.url(bill.image_key)
        except ImageNotFound:
            logger.warning("Image %s of bill %s no longer exists", bill.image_key, bill.id)
        except ImageStoreError as exc:
            logger.warning("Could not resolve image for bill %s: %s", bill.id, exc)

    return serialize_bill(bill, image_url=image_url)


def list_apartment_bills(apartment_id: int, caller_id: int, session: Session) -> list[dict]:
    authz.require_manager(caller_id, apartment_id, session)
    result = []
    for bill in bill_repo.list_for_apartment(apartment_id, session):
        data = serialize_bill(bill)
        payments = bill.payments
        data["divided"] = bool(payments)
        data["paid_count"] = sum(1 for p in payments if p.status == PaymentStatus.PAID)
        data["payments_count"] = len(payments)
        result.append(data)
    return result


def update_bill(
        manager_id: int,
        bill_id: int,
        fields: dict,
        session: Session,
) -> dict:
    """
    Updates type, description, dates and (while undivided) the total.

    Raises:
      AppError(BILL_NOT_FOUND, 404), AppError(FORBIDDEN, 403)
      AppError(AMOUNT_LOCKED, 409)             — total changed after division
      AppError(DEADLINE_AFTER_DUE_DATE, 400)   — merged dates out of order
    """
    bill = _get_bill_or_404(bill_id, session)
    authz.require_manager(manager_id, bill.apartment_id, session)

    if "total_amount" in fields:
        new_total = fields["total_amount"].quantize(CENT, rounding=ROUND_HALF_EVEN)
        if new_total != bill.total_amount and bill.payments:
            raise AppError(
                ErrorCode.AMOUNT_LOCKED,
                "The total of a bill that has already been divided cannot change.",
                409,
                field="total_amount",
            )
        bill.total_amount = new_total

    due_date = fields.get("due_date", bill.due_date)
    deadline = fields.get("billing_deadline", bill.billing_deadline)
    if deadline is not None and deadline > due_date:
        raise AppError(
            ErrorCode.DEADLINE_AFTER_DUE_DATE,
            "billing_deadline must be on or before due_date.",
            400,
            field="billing_deadline",
        )
    bill.due_date = due_date
    bill.billing_deadline = deadline

    if "bill_type" in fields:
        bill.bill_type = fields["bill_type"]
    if "description" in fields:
        bill.description = fields["description"] or ""

    bill.updated_at = datetime.now(timezone.utc)
    session.flush()
    return serialize_bill(bill)


def delete_bill(manager_id: int, bill_id: int, session: Session, images) -> None:
    """
    Deletes a bill and its payment rows. The image is deleted (best-effort)
    once the deletion has been committed.

    Raises:
      AppError(BILL_NOT_FOUND, 404), AppError(FORBIDDEN, 403)
      AppError(BILL_HAS_PAID_PAYMENTS, 409)
    """
    bill = _get_bill_or_404(bill_id, session)
    authz.require_manager(manager_id, bill.apartment_id, session)

    if payment_repo.has_paid(bill.id, session):
        raise AppError(
            ErrorCode.BILL_HAS_PAID_PAYMENTS,
            "Bills with settled payments cannot be deleted.",
            409,
        )

    image_key = bill.image_key
    bill_repo.delete(bill, session)
    if image_key:
        after_commit(session, _delete_image_quietly, images, image_key)


def pay_batch(
        user_id: int,
        idempotency_key: str,
        session: Session,
        gateway,
        bill_ids: list[int] | None = None,
) -> dict:
    """
    Pays the caller's pending (or previously failed) payments, either all
    of them or those for `bill_ids`, through the payment gateway.

    Replays: rows already paid inside the selection count as paid, and a
    call that finds nothing new to charge reports the rows its key paid
    before, with total_amount 0.00. A batch that loses the row locks to a
    concurrent batch with the same key answers the same way.

    Raises:
      AppError(BILL_NOT_FOUND, 404)
      AppError(PAYMENT_NOT_OWNED, 403)   — a bill_id the caller does not owe
      AppError(NO_PENDING_PAYMENTS, 409)
      AppError(PAYMENT_FAILED, 502)      — gateway refused; nothing changed
    """
    explicit = bool(bill_ids)
    if explicit:
        wanted = sorted(set(bill_ids))
        rows = payment_repo.list_for_user(user_id, session, bill_ids=wanted)
        owed = {payment.bill_id for payment in rows}
        for bill_id in wanted:
            if bill_id in owed:
                continue
            _get_bill_or_404(bill_id, session)
            raise AppError(
                ErrorCode.PAYMENT_NOT_OWNED,
                f"You do not owe a payment for bill {bill_id}.",
                403,
                field="bill_ids",
            )
    else:
        rows = payment_repo.list_for_user(user_id, session)

    to_charge = [p for p in rows if p.status in PAYABLE_PAYMENT_STATUSES]
    if explicit:
        already_paid = [p for p in rows if p.status == PaymentStatus.PAID]
    else:
        already_paid = [
            p for p in rows
            if p.status == PaymentStatus.PAID and p.idempotency_key == idempotency_key
        ]

    if not to_charge:
        if already_paid:
            return _replay_report(already_paid)
        raise _nothing_to_pay()

    payment_ids = [p.id for p in to_charge]
    try:
        reference = gateway.pay_bills(payment_ids, gateway_key(user_id, idempotency_key))
    except PaymentGatewayError as exc:
        logger.warning("Gateway refused batch for user %s: %s", user_id, exc.reason)
        raise AppError(
            ErrorCode.PAYMENT_FAILED,
            f"The payment was declined: {exc.reason}",
            502,
        ) from exc

    changed = payment_repo.mark_paid(
        payment_ids,
        paid_at=datetime.now(timezone.utc),
        reference=reference,
        idempotency_key=idempotency_key,
        session=session,
    )
    if not changed:
        # A concurrent batch got the row locks first. If it ran under this
        # key, answer the way a later replay would.
        replayed = [
            p for p in to_charge
            if p.status == PaymentStatus.PAID and p.idempotency_key == idempotency_key
        ]
        if not replayed:
            raise _nothing_to_pay()
        return _replay_report(replayed + already_paid)

    total = sum((p.amount for p in changed), ZERO)
    logger.info("User %s paid %d payment(s), total %s", user_id, len(changed), total)

    return {
        "bills_paid": len(changed) + len(already_paid),
        "total_amount": _money(total),
        "payment_reference": reference,
    }


def _replay_report(paid: list) -> dict:
    return {
        "bills_paid": len(paid),
        "total_amount": _money(ZERO),
        "payment_reference": paid[0].payment_reference,
    }


def _nothing_to_pay() -> AppError:
    return AppError(
        ErrorCode.NO_PENDING_PAYMENTS,
        "There are no pending payments to pay.",
        409,
    )


def get_unpaid_bills(user_id: int, session: Session) -> list[dict]:
    result = []
    for bill, payment in payment_repo.list_unpaid_bills(user_id, session):
        data = serialize_bill(bill)
        data["amount_due"] = _money(payment.amount)
        data["payment_id"] = payment.id
        result.append(data)
    return result


def get_bill_with_payment_status(user_id: int, bill_id: int, session: Session) -> dict:
    """
    The bill together with the caller's own obligation for it.

    Raises:
      AppError(BILL_NOT_FOUND, 404), AppError(FORBIDDEN, 403)
      AppError(PAYMENT_NOT_FOUND, 404) — bill not divided for the caller
    """
    bill = _get_bill_or_404(bill_id, session)
    authz.require_member(user_id, bill.apartment_id, session)

    payment = payment_repo.get_for_bill_and_user(bill_id, user_id, session)
    if payment is None:
        raise AppError(
            ErrorCode.PAYMENT_NOT_FOUND,
            f"You have no payment for bill {bill_id}.",
            404,
        )

    return {
        "bill": serialize_bill(bill),
        "payment_status": payment.status.value,
        "amount_due": _money(payment.amount if payment.status != PaymentStatus.PAID else ZERO),
        "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
    }


def get_payment_history(user_id: int, session: Session) -> list[dict]:
    return [
        {
            "bill": serialize_bill(bill),
            "payment": _serialize_payment(payment),
            "apartment_name": apartment_name,
        }
        for payment, bill, apartment_name in payment_repo.list_paid_history(user_id, session)
    ]
