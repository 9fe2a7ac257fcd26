"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session with create_app("testing").
    The database is in-memory SQLite unless TEST_DATABASE_URL points at
    PostgreSQL; tables come from db.create_all().
  - The invitation store is bound to fakeredis, so the WATCH/MULTI
    compare-and-set runs for real.
  - The chat notifier and image store are replaced by MagicMocks before
    every test (`sidecars` fixture) so tests can assert on what was sent or
    make a call fail. The payment gateway is a fresh MockPaymentGateway.
  - Between tests all rows are deleted in FK-safe order and redis is flushed.

Helper functions (not fixtures):
  - signup(client, ...)          → {"user": {...}, "token": "..."}
  - login(client, ...)           → login data dict
  - auth_headers(token)          → {"Authorization": "Bearer <token>"}
  - make_apartment(client, ...)  → apartment dict
  - invite_and_join(client, ...) → adds a resident through a real invitation
  - create_bill(client, ...)     → HTTP response
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import fakeredis
import pytest
from sqlalchemy import text

from backend.app import create_app
from backend.app.extensions import db as _db
from backend.app.sidecars.payment_gateway import MockPaymentGateway

PASSWORD = "Password1"


@pytest.fixture(scope="session")
def redis_client():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture(scope="session")
def app(redis_client):
    flask_app = create_app("testing", redis_client=redis_client, s3_client=MagicMock())

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def clean_tables(app, redis_client):
    """Deletes all rows and invitations after every test."""
    yield

    with app.app_context():
        _db.session.rollback()
        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM payments"))
            conn.execute(text("DELETE FROM bills"))
            conn.execute(text("DELETE FROM memberships"))
            conn.execute(text("DELETE FROM apartments"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()
    redis_client.flushall()
    app.config["INCLUDE_MANAGER_IN_SPLIT"] = False


@pytest.fixture(autouse=True)
def sidecars(app):
    """Fresh test doubles for the chat notifier, image store and gateway."""
    notifier = MagicMock(name="notifier")
    images = MagicMock(name="image_store")
    images.save.return_value = "bills/receipt.png"
    images.url.return_value = "https://images.test/bills/receipt.png?sig=abc"
    gateway = MockPaymentGateway()

    originals = {
        name: app.extensions[name]
        for name in ("notifier", "image_store", "payment_gateway")
    }
    app.extensions["notifier"] = notifier
    app.extensions["image_store"] = images
    app.extensions["payment_gateway"] = gateway

    yield SimpleNamespace(notifier=notifier, images=images, gateway=gateway)

    app.extensions.update(originals)


@pytest.fixture
def client(app):
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def signup(
    client,
    username: str = "alice",
    user_type: str = "manager",
    telegram_user: str | None = None,
    email: str | None = None,
    password: str = PASSWORD,
) -> dict:
    """Signs a user up and returns {"user": {...}, "token": "..."}."""
    payload = {
        "username": username,
        "email": email or f"{username}@test.com",
        "password": password,
        "full_name": username.title(),
        "user_type": user_type,
    }
    if telegram_user is not None:
        payload["telegram_user"] = telegram_user
    resp = client.post("/v1/user/signup", json=payload)
    assert resp.status_code == 201, f"signup failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, username: str, password: str = PASSWORD) -> dict:
    resp = client.post("/v1/user/login", json={"username": username, "password": password})
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def make_apartment(client, token: str, name: str = "Sunny", units_count: int = 10) -> dict:
    resp = client.post(
        "/v1/manager/apartment/create",
        json={"name": name, "units_count": units_count, "address": "1 Main St"},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_apartment failed: {resp.get_json()}"
    return resp.get_json()["data"]


def invite(client, manager_token: str, apartment_id: int, telegram_username: str):
    return client.post(
        "/v1/manager/apartment/invite",
        json={"apartment_id": apartment_id, "telegram_username": telegram_username},
        headers=auth_headers(manager_token),
    )


def join(client, token: str, invitation_token: str):
    return client.post(
        f"/v1/resident/apartment/join?token={invitation_token}",
        headers=auth_headers(token),
    )


def invite_and_join(
    client,
    manager_token: str,
    apartment_id: int,
    username: str,
) -> dict:
    """
    Signs up a resident with telegram handle `<username>_tg`, invites and
    joins them. Returns the resident's signup data.
    """
    resident = signup(client, username, "resident", telegram_user=f"{username}_tg")
    resp = invite(client, manager_token, apartment_id, f"@{username}_tg")
    assert resp.status_code == 201, f"invite failed: {resp.get_json()}"
    resp = join(client, resident["token"], resp.get_json()["data"]["token"])
    assert resp.status_code == 200, f"join failed: {resp.get_json()}"
    return resident


def create_bill(
    client,
    token: str,
    apartment_id: int,
    total_amount: str = "100.00",
    bill_type: str = "water",
    due_date: str = "2024-01-15",
    billing_deadline: str | None = "2024-01-10",
    **extra,
):
    form = {
        "type": bill_type,
        "total_amount": total_amount,
        "due_date": due_date,
        **extra,
    }
    if billing_deadline is not None:
        form["billing_deadline"] = billing_deadline
    return client.post(
        f"/v1/manager/apartment/{apartment_id}/bills",
        data=form,
        headers=auth_headers(token),
        content_type="multipart/form-data",
    )


def payments_for_bill(app, bill_id: int) -> list:
    from backend.app.repositories import payment_repo

    with app.app_context():
        return [
            (p.user_id, str(p.amount), p.status.value)
            for p in payment_repo.list_for_bill(bill_id, _db.session)
        ]
