"""
schemas/user_schema.py — Marshmallow schemas for signup, login and profile.

Validation responsibility:
  - This file: field types, lengths, formats, the user_type enumerator and
    telegram username normalisation + validation.
  - services/auth_service.py and services/user_service.py: uniqueness of
    username / email / telegram_user (needs a DB lookup).

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema — it requires an active Flask app context
           and breaks unit tests. See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    post_load,
    pre_load,
    validate,
    validates,
)

from backend.app.errors import ErrorCode
from backend.app.models.enums import UserRole, enum_values
from backend.app.validators import is_valid_telegram, normalize_telegram_username


def _validate_telegram(value: str) -> None:
    # Empty means "no telegram handle"; anything else must be a valid one.
    if value and not is_valid_telegram(value):
        raise ValidationError(ErrorCode.INVALID_TELEGRAM_USERNAME)


def _normalize_telegram_field(data, key: str = "telegram_user"):
    if isinstance(data, dict) and key in data and data[key] is not None:
        data = dict(data)
        data[key] = normalize_telegram_username(str(data[key]))
    return data


class SignupSchema(Schema):
    """
    POST /v1/user/signup

      username      : 3–50 chars, letters, digits and underscore
      email         : valid email
      password      : min 8 chars, at least one letter and one digit
      user_type     : "manager" | "resident"
      telegram_user : optional; "@Bob_Smith" is stored as "bob_smith"
    """

    username = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=3,
                max=50,
                error="Username must be between 3 and 50 characters.",
            ),
            validate.Regexp(
                r"^[a-zA-Z0-9_]+$",
                error="Username may only contain letters, numbers, and underscores.",
            ),
        ],
    )
    email = fields.Email(required=True, validate=validate.Length(max=255))
    password = fields.Str(required=True, load_only=True)
    full_name = fields.Str(load_default="", validate=validate.Length(max=120))
    phone = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=32))
    user_type = fields.Str(
        required=True,
        validate=validate.OneOf(
            enum_values(UserRole),
            error=ErrorCode.INVALID_USER_TYPE,
        ),
    )
    telegram_user = fields.Str(
        load_default=None,
        allow_none=True,
        validate=_validate_telegram,
    )

    @pre_load
    def normalize_telegram(self, data, **kwargs):
        return _normalize_telegram_field(data)

    @validates("password")
    def validate_password_strength(self, value: str) -> None:
        if len(value) < 8:
            raise ValidationError("Password must be at least 8 characters long.")
        if not any(c.isalpha() for c in value):
            raise ValidationError("Password must contain at least one letter.")
        if not any(c.isdigit() for c in value):
            raise ValidationError("Password must contain at least one digit.")

    @post_load
    def to_role(self, data, **kwargs):
        data["user_type"] = UserRole(data["user_type"])
        return data


class LoginSchema(Schema):
    """
    POST /v1/user/login

    Credential correctness is checked in auth_service.py (INVALID_CREDENTIALS, 401).
    """

    username = fields.Str(required=True)
    password = fields.Str(required=True, load_only=True)


class UpdateProfileSchema(Schema):
    """
    PUT /v1/resident/profile — every field optional; absent means unchanged.

    Sending telegram_user as "" or null clears the handle (and the chat binding).
    """

    email = fields.Email(validate=validate.Length(max=255))
    phone = fields.Str(allow_none=True, validate=validate.Length(max=32))
    full_name = fields.Str(allow_none=True, validate=validate.Length(max=120))
    telegram_user = fields.Str(allow_none=True, validate=_validate_telegram)

    @pre_load
    def normalize_telegram(self, data, **kwargs):
        return _normalize_telegram_field(data)


class TelegramChatSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    id = fields.Int(required=True)
    username = fields.Str(load_default=None, allow_none=True)


class TelegramMessageSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    chat = fields.Nested(TelegramChatSchema, required=True)
    text = fields.Str(load_default="")


class TelegramUpdateSchema(Schema):
    """POST /v1/telegram/webhook — the subset of a Bot API Update we read."""

    class Meta:
        unknown = EXCLUDE

    update_id = fields.Int(load_default=None)
    message = fields.Nested(TelegramMessageSchema, load_default=None, allow_none=True)
