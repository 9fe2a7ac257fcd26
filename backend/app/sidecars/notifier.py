"""
sidecars/notifier.py — Telegram Bot API client.

All sends go through sendMessage with form-encoded chat_id/text. A chat
target is a numeric chat id when the user has started the bot, otherwise
"@<telegram_user>".

Callers treat every send as fire-and-forget: failures raise NotificationError,
which callers log and never surface to the HTTP client.
"""

from __future__ import annotations

from decimal import Decimal

import httpx


class NotificationError(Exception):
    """The chat API could not be reached or refused the message."""


def chat_target(telegram_chat_id: int | None, telegram_user: str | None) -> str | None:
    """Numeric chat id when connected, else @username, else None."""
    if telegram_chat_id:
        return str(telegram_chat_id)
    if telegram_user:
        return f"@{telegram_user}"
    return None


class TelegramNotifier:

    def __init__(self, http_client: httpx.Client | None = None, bot_token: str = "") -> None:
        self._http = http_client
        self.bot_token = bot_token

    def init_app(self, app, http_client: httpx.Client | None = None) -> None:
        self.bot_token = app.config.get("TELEGRAM_BOT_TOKEN", "")
        if http_client is None:
            base_url = app.config.get("TELEGRAM_BASE_URL", "https://api.telegram.org").rstrip("/")
            http_client = httpx.Client(
                base_url=f"{base_url}/bot{self.bot_token}/",
                timeout=httpx.Timeout(app.config.get("TELEGRAM_TIMEOUT_SECONDS", 30.0)),
                limits=httpx.Limits(
                    max_connections=app.config.get("TELEGRAM_MAX_CONNECTIONS", 10),
                ),
            )
        self._http = http_client
        app.extensions["notifier"] = self

    @property
    def http(self) -> httpx.Client:
        if self._http is None:
            raise RuntimeError("TelegramNotifier used before init_app().")
        return self._http

    def send_message(self, target: str, text: str) -> None:
        try:
            response = self.http.post("sendMessage", data={"chat_id": target, "text": text})
        except httpx.TimeoutException as exc:
            raise NotificationError(f"telegram request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise NotificationError(f"failed to send message: {exc}") from exc

        if response.status_code != 200:
            raise NotificationError(
                f"telegram API returned non-200 status: {response.status_code}"
            )

    def send_invitation(self, invitation, target: str, apartment_name: str, invite_url: str) -> None:
        text = (
            f"You've been invited to join apartment {apartment_name}!\n\n"
            f"Click this link to accept: {invite_url}\n"
            f"The link expires at {invitation.expires_at:%Y-%m-%d %H:%M} UTC."
        )
        self.send_message(target, text)

    def send_bill_notification(self, target: str, bill, amount: Decimal) -> None:
        deadline = (
            f"\nPay before: {bill.billing_deadline.isoformat()}"
            if bill.billing_deadline else ""
        )
        text = (
            f"New {bill.bill_type.value} bill for your apartment.\n"
            f"Your share: {amount}\n"
            f"Due date: {bill.due_date.isoformat()}"
            f"{deadline}"
        )
        if bill.description:
            text += f"\n{bill.description}"
        self.send_message(target, text)
