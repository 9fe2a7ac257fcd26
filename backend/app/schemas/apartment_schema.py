"""
schemas/apartment_schema.py — Marshmallow schemas for apartment endpoints.

Whether the caller manages the apartment is checked in the service
(FORBIDDEN, 403), never here.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, post_load, validate

from backend.app.errors import ErrorCode
from backend.app.validators import is_valid_telegram, normalize_telegram_username


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_positive_id = validate.Range(min=1, error="Must be a positive integer.")


class CreateApartmentSchema(Schema):
    """POST /v1/manager/apartment/create"""

    name = fields.Str(
        required=True,
        validate=[validate.Length(min=1, max=100), _validate_non_empty_after_trim],
    )
    address = fields.Str(load_default="", validate=validate.Length(max=255))
    units_count = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="units_count must be at least 1."),
    )


class UpdateApartmentSchema(Schema):
    """PUT /v1/manager/apartment/update — `id` plus any fields to change."""

    id = fields.Int(required=True, strict=True, validate=_positive_id)
    name = fields.Str(validate=[validate.Length(min=1, max=100), _validate_non_empty_after_trim])
    address = fields.Str(validate=validate.Length(max=255))
    units_count = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="units_count must be at least 1."),
    )


class ApartmentIdQuerySchema(Schema):
    """`?id=` on the manager apartment routes."""

    id = fields.Int(required=True, validate=_positive_id)


class LeaveQuerySchema(Schema):
    apartment_id = fields.Int(required=True, validate=_positive_id)


class JoinQuerySchema(Schema):
    token = fields.Str(required=True, validate=validate.Length(min=1, max=128))


class InviteSchema(Schema):
    """
    POST /v1/manager/apartment/invite

    telegram_username is normalised ("@Bob" → "bob"), then validated.
    """

    apartment_id = fields.Int(required=True, strict=True, validate=_positive_id)
    telegram_username = fields.Str(required=True)

    @post_load
    def normalize_username(self, data, **kwargs):
        username = normalize_telegram_username(data["telegram_username"])
        if not is_valid_telegram(username):
            raise ValidationError(
                ErrorCode.INVALID_TELEGRAM_USERNAME,
                field_name="telegram_username",
            )
        data["telegram_username"] = username
        return data
