"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, which gives
           - isolated test app instances
           - `alembic` and the entrypoint can import models without serving

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Initialise extensions and sidecars via init_app()
  3. Register route blueprints under /v1, plus /health
  4. Register global error handlers (AppError, ValidationError,
     HTTPException, Exception → JSON envelope)
  5. Serialise Decimal as a string so amounts never become JS numbers

Tests swap a collaborator by passing it to init_app() or by replacing its
entry in app.extensions; routes look collaborators up there.
"""

from __future__ import annotations

import traceback
from decimal import Decimal

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config


class DecimalJSONProvider(DefaultJSONProvider):
    """
    Serialises Decimal as str: Decimal("10.50") → "10.50", not 10.5.
    """

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development", **overrides) -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
        overrides:   Collaborators to bind instead of the configured ones:
                     redis_client, s3_client, http_client.
    """
    app = Flask(__name__)
    app.json_provider_class = DecimalJSONProvider
    app.json = DecimalJSONProvider(app)

    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    # Import here (not at module top) to avoid circular imports.
    from backend.app.extensions import (
        db,
        image_store,
        invitation_store,
        ma,
        notifier,
        payment_gateway,
    )
    db.init_app(app)
    ma.init_app(app)
    invitation_store.init_app(app, client=overrides.get("redis_client"))
    image_store.init_app(app, client=overrides.get("s3_client"))
    notifier.init_app(app, http_client=overrides.get("http_client"))
    payment_gateway.init_app(app)

    # Populate SQLAlchemy metadata for create_all() and Alembic.
    with app.app_context():
        from backend.app.models import (  # noqa: F401
            apartment,
            bill,
            membership,
            payment,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)
    _register_teardown(app)

    return app


def _register_blueprints(app: Flask) -> None:
    from backend.app.routes.auth import auth_bp
    from backend.app.routes.bills import bills_bp
    from backend.app.routes.manager import manager_bp
    from backend.app.routes.resident import resident_bp
    from backend.app.routes.telegram import telegram_bp

    app.register_blueprint(auth_bp,     url_prefix="/v1/user")
    app.register_blueprint(resident_bp, url_prefix="/v1/resident")
    app.register_blueprint(manager_bp,  url_prefix="/v1/manager")
    app.register_blueprint(bills_bp,    url_prefix="/v1/bills")
    app.register_blueprint(telegram_bp, url_prefix="/v1/telegram")

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "healthy", "service": app.config["SERVICE_NAME"]}), 200


def _register_error_handlers(app: Flask) -> None:
    """
    Every error leaves as {"success": false, "error": ..., "code": ...}.
    Stack traces never leave the server; they go to app.logger.
    """
    from backend.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Returns the FIRST field error only. A message that is itself an
        ErrorCode constant (e.g. INVALID_DATE) becomes the code, with a
        readable default message.
        """
        field, raw_message = _first_validation_message(error.messages)

        known_codes = set(vars(ErrorCode).values())
        if raw_message in known_codes:
            code = raw_message
            message = _code_to_message(code)
        elif raw_message.startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
            message = f"{field} is required." if field else raw_message
        else:
            code = ErrorCode.INVALID_FIELD
            message = f"{field}: {raw_message}" if field else raw_message

        return jsonify(AppError(code, message, 400, field=field).to_dict()), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        code = {
            404: ErrorCode.RESOURCE_NOT_FOUND,
            405: ErrorCode.METHOD_NOT_ALLOWED,
            413: ErrorCode.PAYLOAD_TOO_LARGE,
        }.get(error.code, ErrorCode.BAD_REQUEST)
        return jsonify({
            "success": False,
            "error": error.description or error.name,
            "code": code,
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "success": False,
            "error": "An unexpected error occurred. Please try again later.",
            "code": ErrorCode.INTERNAL_ERROR,
        }), 500


def _register_teardown(app: Flask) -> None:
    """Side effects queued by a request that never committed die with it."""
    from backend.app.extensions import db
    from backend.app.services.after_commit import discard

    @app.teardown_request
    def drop_uncommitted_side_effects(_error=None):
        discard(db.session)


def _first_validation_message(messages) -> tuple[str | None, str]:
    """Walks marshmallow's nested messages to the first (field, message) pair."""
    field = None
    while isinstance(messages, dict) and messages:
        key, messages = next(iter(messages.items()))
        if key != "_schema" and not isinstance(key, int):
            field = key if field is None else f"{field}.{key}"
    if isinstance(messages, list):
        messages = messages[0] if messages else "Invalid input."
        if isinstance(messages, dict):
            return _first_validation_message(messages)
    return field, str(messages) if messages else "Invalid input."


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development (DEBUG or TESTING).
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allow_all = bool(app.config.get("DEBUG") or app.config.get("TESTING"))

        if allow_all:
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"

        return response


def _code_to_message(code: str) -> str:
    """Readable default for a ValidationError whose message is an ErrorCode."""
    _messages = {
        "INVALID_AMOUNT_PRECISION": "Amount must have at most 2 decimal places.",
        "INVALID_BILL_TYPE": "type must be one of water, electricity, gas, maintenance, other.",
        "INVALID_USER_TYPE": "user_type must be 'manager' or 'resident'.",
        "INVALID_DATE": "Dates must use the YYYY-MM-DD format.",
        "DEADLINE_AFTER_DUE_DATE": "billing_deadline must be on or before due_date.",
        "INVALID_TELEGRAM_USERNAME": (
            "Telegram usernames are 5-32 characters of letters, digits and underscores."
        ),
    }
    return _messages.get(code, "Invalid input.")
