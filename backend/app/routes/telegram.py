"""
routes/telegram.py — Bot API webhook.

POST /v1/telegram/webhook receives Update objects. A "/start" message binds
the chat id to the account whose telegram_user matches the sender's
username, so later notifications go to the numeric chat id. Everything else
is acknowledged and ignored; the Bot API retries non-2xx responses.
"""

from __future__ import annotations

import logging

from flask import Blueprint, request

from backend.app.extensions import db
from backend.app.routes import ok
from backend.app.schemas.user_schema import TelegramUpdateSchema
from backend.app.services import user_service
from backend.app.services.after_commit import commit

logger = logging.getLogger(__name__)

telegram_bp = Blueprint("telegram", __name__)


@telegram_bp.route("/webhook", methods=["POST"])
def webhook():
    update = TelegramUpdateSchema().load(request.get_json(force=True, silent=True) or {})
    message = update.get("message")

    bound = False
    if message and message["text"].strip().startswith("/start"):
        chat = message["chat"]
        bound = user_service.bind_telegram_chat(
            chat_username=chat.get("username"),
            chat_id=chat["id"],
            session=db.session,
        )
        commit(db.session)

    return ok({"bound": bound}, "Update processed.")
