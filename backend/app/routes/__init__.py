"""
routes — one Blueprint per route family, registered under /v1 by the factory.

Layer rules (every module in this package):
  - Parse the request and validate it with a schema (ValidationError → 400)
  - Call ONE service function, passing collaborators from app.extensions
  - Commit mutations with after_commit.commit(db.session), which runs the
    side effects services queued once the commit has succeeded
  - Return the standard envelope via ok()

No business logic here. No DB queries. AppError propagates to the global
error handler in app/__init__.py; routes never catch it.
"""

from __future__ import annotations

from flask import current_app, jsonify


def ok(data=None, message: str = "OK", status: int = 200, warnings: list | None = None):
    """{"success": true, "message": ..., "data": ...} plus warnings when there are any."""
    body = {"success": True, "message": message, "data": data}
    if warnings:
        body["warnings"] = warnings
    return jsonify(body), status


def sidecar(name: str):
    """The collaborator registered by init_app(): invitation_store, image_store,
    notifier or payment_gateway."""
    return current_app.extensions[name]
