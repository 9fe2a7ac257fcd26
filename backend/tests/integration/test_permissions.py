"""
tests/integration/test_permissions.py — Role and ownership gates.

  - resident accounts on /v1/manager/*        → 401 ROLE_NOT_ALLOWED
  - a manager acting on someone else's data    → 403 FORBIDDEN, nothing changes
"""

from __future__ import annotations

import pytest

from backend.app.extensions import db
from backend.app.models.apartment import Apartment
from backend.app.models.bill import Bill

from .conftest import (
    auth_headers,
    create_bill,
    invite,
    invite_and_join,
    make_apartment,
    signup,
)


@pytest.fixture
def two_managers(client):
    alice = signup(client, "alice")
    apartment = make_apartment(client, alice["token"])
    bob = invite_and_join(client, alice["token"], apartment["id"], "bob")
    bill_id = create_bill(client, alice["token"], apartment["id"]).get_json()["data"]["bill_id"]
    eve = signup(client, "eve")
    return {"alice": alice, "bob": bob, "eve": eve, "apartment": apartment, "bill_id": bill_id}


@pytest.mark.parametrize("method,path", [
    ("post", "/v1/manager/apartment/create"),
    ("get", "/v1/manager/apartment/get?id=1"),
    ("post", "/v1/manager/apartment/invite"),
    ("delete", "/v1/manager/bill/delete?id=1"),
])
def test_resident_account_on_manager_route_returns_401(client, method, path):
    bob = signup(client, "bob", "resident")
    resp = getattr(client, method)(path, json={}, headers=auth_headers(bob["token"]))
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "ROLE_NOT_ALLOWED"


def test_other_manager_cannot_read_apartment(client, two_managers):
    resp = client.get(
        f"/v1/manager/apartment/get?id={two_managers['apartment']['id']}",
        headers=auth_headers(two_managers["eve"]["token"]),
    )
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "FORBIDDEN"


def test_other_manager_cannot_update_apartment(app, client, two_managers):
    apartment_id = two_managers["apartment"]["id"]
    resp = client.put(
        "/v1/manager/apartment/update",
        json={"id": apartment_id, "name": "Taken"},
        headers=auth_headers(two_managers["eve"]["token"]),
    )
    assert resp.status_code == 403
    with app.app_context():
        assert db.session.get(Apartment, apartment_id).name == "Sunny"


def test_other_manager_cannot_delete_apartment(app, client, two_managers):
    apartment_id = two_managers["apartment"]["id"]
    resp = client.delete(
        f"/v1/manager/apartment/delete?id={apartment_id}",
        headers=auth_headers(two_managers["eve"]["token"]),
    )
    assert resp.status_code == 403
    with app.app_context():
        assert db.session.get(Apartment, apartment_id) is not None


def test_other_manager_cannot_invite(client, two_managers, sidecars):
    signup(client, "carol", "resident", telegram_user="carol_tg")
    resp = invite(
        client,
        two_managers["eve"]["token"],
        two_managers["apartment"]["id"],
        "carol_tg",
    )
    assert resp.status_code == 403
    sidecars.notifier.send_invitation.assert_not_called()


def test_other_manager_cannot_create_bill(app, client, two_managers):
    resp = create_bill(client, two_managers["eve"]["token"], two_managers["apartment"]["id"])
    assert resp.status_code == 403
    with app.app_context():
        assert db.session.query(Bill).count() == 1


def test_other_manager_cannot_touch_bills(app, client, two_managers):
    bill_id = two_managers["bill_id"]
    headers = auth_headers(two_managers["eve"]["token"])

    update = client.put(
        "/v1/manager/bill/update",
        json={"id": bill_id, "description": "mine now"},
        headers=headers,
    )
    delete = client.delete(f"/v1/manager/bill/delete?id={bill_id}", headers=headers)

    assert update.status_code == 403
    assert delete.status_code == 403
    with app.app_context():
        bill = db.session.get(Bill, bill_id)
        assert bill is not None
        assert bill.description == ""


def test_resident_cannot_list_residents_of_own_apartment(client, two_managers):
    resp = client.get(
        f"/v1/manager/apartment/residents?id={two_managers['apartment']['id']}",
        headers=auth_headers(two_managers["bob"]["token"]),
    )
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "ROLE_NOT_ALLOWED"


def test_resident_can_read_bill_of_own_apartment(client, two_managers):
    resp = client.get(
        f"/v1/bills?id={two_managers['bill_id']}",
        headers=auth_headers(two_managers["bob"]["token"]),
    )
    assert resp.status_code == 200
    assert resp.get_json()["data"]["image_url"] == ""
