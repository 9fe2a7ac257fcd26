"""
extensions.py — Process-wide extension singletons.

Everything here is created unbound at import time and attached to an app in
the factory:

    1. Create the object here (no app attached yet).
    2. Call init_app(app) inside create_app() in app/__init__.py.
    3. Import it from here wherever needed.

    from backend.app.extensions import db, invitation_store

This is the single composition root for the database and the four
collaborators services depend on (volatile store, image store, chat
notifier, payment gateway). Services never import these; routes pass them
in as arguments, so unit tests hand services plain mocks instead.
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

from backend.app.repositories.invitation_store import InvitationStore
from backend.app.sidecars.image_store import ImageStore
from backend.app.sidecars.notifier import TelegramNotifier
from backend.app.sidecars.payment_gateway import MockPaymentGateway

db = SQLAlchemy()

# Marshmallow instance, available for SQLAlchemy model serialization helpers.
#
# IMPORTANT: schema inheritance rule.
#   All validation Schema classes (in app/schemas/) inherit from
#   marshmallow.Schema directly, NOT from ma.Schema. ma.Schema needs an
#   active Flask application context, and tests/unit/ runs without one.
ma = Marshmallow()

invitation_store = InvitationStore()
image_store = ImageStore()
notifier = TelegramNotifier()
payment_gateway = MockPaymentGateway()
