"""
errors.py — AppError base class and error code registry.

Every error returned by the API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - 401 means "we do not know who you are, or your role may not call this
    route". 403 means "we know who you are, but you do not manage this
    apartment / own this payment". Never swap them.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "success": False,
            "error":   self.message,
            "code":    self.code,
        }
        if self.field is not None:
            payload["field"] = self.field
        return payload

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by kind. HTTP status is indicated in the section comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_BILL_TYPE          = "INVALID_BILL_TYPE"
    INVALID_USER_TYPE          = "INVALID_USER_TYPE"
    INVALID_DATE               = "INVALID_DATE"
    DEADLINE_AFTER_DUE_DATE    = "DEADLINE_AFTER_DUE_DATE"
    INVALID_TELEGRAM_USERNAME  = "INVALID_TELEGRAM_USERNAME"

    # ── Auth Errors (401) ──────────────────────────────────────────────────
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"
    TOKEN_MISSING              = "TOKEN_MISSING"
    TOKEN_INVALID              = "TOKEN_INVALID"
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"
    ROLE_NOT_ALLOWED           = "ROLE_NOT_ALLOWED"

    # ── Authorization Errors (403) ─────────────────────────────────────────
    FORBIDDEN                  = "FORBIDDEN"
    PAYMENT_NOT_OWNED          = "PAYMENT_NOT_OWNED"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    APARTMENT_NOT_FOUND        = "APARTMENT_NOT_FOUND"
    BILL_NOT_FOUND             = "BILL_NOT_FOUND"
    PAYMENT_NOT_FOUND          = "PAYMENT_NOT_FOUND"
    INVITATION_NOT_FOUND       = "INVITATION_NOT_FOUND"
    RESOURCE_NOT_FOUND         = "RESOURCE_NOT_FOUND"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_USERNAME         = "DUPLICATE_USERNAME"
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    DUPLICATE_TELEGRAM_USER    = "DUPLICATE_TELEGRAM_USER"
    ALREADY_MEMBER             = "ALREADY_MEMBER"
    NOT_A_MEMBER               = "NOT_A_MEMBER"
    MANAGER_CANNOT_LEAVE       = "MANAGER_CANNOT_LEAVE"
    NO_RESIDENTS               = "NO_RESIDENTS"
    NO_PENDING_PAYMENTS        = "NO_PENDING_PAYMENTS"
    BILL_HAS_PAID_PAYMENTS     = "BILL_HAS_PAID_PAYMENTS"
    USER_HAS_DEPENDENTS        = "USER_HAS_DEPENDENTS"
    AMOUNT_LOCKED              = "AMOUNT_LOCKED"

    # ── Routing Errors (404 / 405 / 413) ────────────────────────────────────
    METHOD_NOT_ALLOWED         = "METHOD_NOT_ALLOWED"
    PAYLOAD_TOO_LARGE          = "PAYLOAD_TOO_LARGE"
    BAD_REQUEST                = "BAD_REQUEST"

    # ── Gone (410) ─────────────────────────────────────────────────────────
    INVITATION_GONE            = "INVITATION_GONE"

    # ── Downstream Errors (502) ────────────────────────────────────────────
    PAYMENT_FAILED             = "PAYMENT_FAILED"

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # Some residents did not receive a payment row for a new bill.
    PAYMENT_ROWS_FAILED     = "PAYMENT_ROWS_FAILED"

    # Invitation was stored but the chat message could not be delivered.
    INVITATION_NOT_DELIVERED = "INVITATION_NOT_DELIVERED"

    # A bill in a batch division could not be divided.
    BILL_NOT_DIVIDED        = "BILL_NOT_DIVIDED"
