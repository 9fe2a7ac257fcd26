"""
schemas/bill_schema.py — Marshmallow schemas for bill and payment endpoints.

Validation responsibility:
  - This file:
      - bill type enumerator (INVALID_BILL_TYPE)
      - total_amount strictly positive, max 2 decimal places
        (INVALID_AMOUNT_PRECISION; never rounded here)
      - dates in YYYY-MM-DD (INVALID_DATE)
      - billing_deadline <= due_date when both are sent (DEADLINE_AFTER_DUE_DATE)
  - services/bill_service.py:
      - manager / membership checks, AMOUNT_LOCKED, NO_RESIDENTS
      - deadline check against the stored date on partial updates

Bill creation arrives as multipart/form-data, so every value is a string:
blank optional fields are dropped before loading.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    post_load,
    pre_load,
    validate,
    validates_schema,
)

from backend.app.errors import ErrorCode
from backend.app.models.enums import BillType, enum_values

DATE_FORMAT = "%Y-%m-%d"


def _validate_monetary_amount(value: Decimal) -> None:
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    # exponent is the negative number of decimal places: -3 → 3 dp → reject
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _bill_type_field(**kwargs) -> fields.Str:
    return fields.Str(
        data_key="type",
        attribute="bill_type",
        validate=validate.OneOf(enum_values(BillType), error=ErrorCode.INVALID_BILL_TYPE),
        **kwargs,
    )


def _date_field(**kwargs) -> fields.Date:
    return fields.Date(
        format=DATE_FORMAT,
        error_messages={"invalid": ErrorCode.INVALID_DATE},
        **kwargs,
    )


def _drop_blank(data):
    if not hasattr(data, "items"):
        return data
    return {
        key: value
        for key, value in data.items()
        if not (isinstance(value, str) and value.strip() == "")
    }


class _BillFieldsMixin:

    @pre_load
    def drop_blank_values(self, data, **kwargs):
        return _drop_blank(data)

    @validates_schema
    def validate_deadline(self, data, **kwargs):
        due_date = data.get("due_date")
        deadline = data.get("billing_deadline")
        if due_date is not None and deadline is not None and deadline > due_date:
            raise ValidationError(
                ErrorCode.DEADLINE_AFTER_DUE_DATE,
                field_name="billing_deadline",
            )

    @post_load
    def to_bill_type(self, data, **kwargs):
        if data.get("bill_type") is not None:
            data["bill_type"] = BillType(data["bill_type"])
        return data


class CreateBillSchema(_BillFieldsMixin, Schema):
    """
    POST /v1/manager/apartment/<id>/bills  (multipart/form-data)

      type             : water | electricity | gas | maintenance | other
      total_amount     : decimal string, > 0, max 2 dp
      due_date         : YYYY-MM-DD
      billing_deadline : optional YYYY-MM-DD, <= due_date
      description      : optional
      divide           : optional bool, default true; false stores the bill
                         undivided for a later /bills/divide call
    The image travels as the `image` file part and is not part of this schema.
    """

    bill_type = _bill_type_field(required=True)
    total_amount = fields.Decimal(required=True, validate=_validate_monetary_amount)
    due_date = _date_field(required=True)
    billing_deadline = _date_field(load_default=None)
    description = fields.Str(load_default="", validate=validate.Length(max=500))
    divide = fields.Bool(load_default=True)


class UpdateBillSchema(_BillFieldsMixin, Schema):
    """PUT /v1/manager/bill/update — `id` plus any fields to change."""

    id = fields.Int(required=True, strict=True, validate=validate.Range(min=1))
    bill_type = _bill_type_field()
    total_amount = fields.Decimal(validate=_validate_monetary_amount)
    due_date = _date_field()
    billing_deadline = _date_field()
    description = fields.Str(validate=validate.Length(max=500))


class DivideBillsSchema(_BillFieldsMixin, Schema):
    """POST /v1/manager/apartment/<id>/bills/divide — optional type filter."""

    bill_type = _bill_type_field(load_default=None)


class PayBatchSchema(Schema):
    """
    POST /v1/bills/pay

      bill_ids        : optional list; empty or absent pays every pending payment
      idempotency_key : required, client-chosen, stable across retries
    """

    bill_ids = fields.List(
        fields.Int(strict=True, validate=validate.Range(min=1)),
        load_default=list,
    )
    idempotency_key = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=128),
    )


class BillIdQuerySchema(Schema):
    """`?id=` on the bill read routes."""

    id = fields.Int(required=True, validate=validate.Range(min=1))
