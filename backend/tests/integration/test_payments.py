"""
tests/integration/test_payments.py — PayBatch through POST /v1/bills/pay.

Covers: paying everything, paying a selection, idempotent replays,
ownership errors, the empty case and gateway failures.
"""

from __future__ import annotations

from unittest.mock import patch

from backend.app.sidecars.payment_gateway import PaymentGatewayError

from .conftest import (
    auth_headers,
    create_bill,
    invite_and_join,
    make_apartment,
    payments_for_bill,
    signup,
)


def _pay(client, token, key="K1", bill_ids=None):
    payload = {"idempotency_key": key}
    if bill_ids is not None:
        payload["bill_ids"] = bill_ids
    return client.post("/v1/bills/pay", json=payload, headers=auth_headers(token))


def _setup(client):
    """alice manages Sunny; bob and carol live there; two bills are divided."""
    alice = signup(client, "alice")
    apartment = make_apartment(client, alice["token"])
    bob = invite_and_join(client, alice["token"], apartment["id"], "bob")
    carol = invite_and_join(client, alice["token"], apartment["id"], "carol")
    water = create_bill(client, alice["token"], apartment["id"]).get_json()["data"]["bill_id"]
    gas = create_bill(
        client, alice["token"], apartment["id"], total_amount="30.00", bill_type="gas",
    ).get_json()["data"]["bill_id"]
    return alice, apartment, bob, carol, water, gas


def test_pay_all_pending(app, client):
    _, _, bob, carol, water, gas = _setup(client)

    resp = _pay(client, bob["token"])

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["bills_paid"] == 2
    assert data["total_amount"] == "65.00"
    assert data["payment_reference"].startswith("pay_")

    bob_id, carol_id = bob["user"]["id"], carol["user"]["id"]
    assert payments_for_bill(app, water) == [
        (bob_id, "50.00", "paid"),
        (carol_id, "50.00", "pending"),
    ]
    assert payments_for_bill(app, gas) == [
        (bob_id, "15.00", "paid"),
        (carol_id, "15.00", "pending"),
    ]


def test_replay_with_same_key_reports_zero_total(client, sidecars):
    _, _, bob, _, _, _ = _setup(client)
    first = _pay(client, bob["token"], key="K1").get_json()["data"]

    with patch.object(sidecars.gateway, "pay_bills", wraps=sidecars.gateway.pay_bills) as spy:
        second = _pay(client, bob["token"], key="K1")

    assert second.status_code == 200
    data = second.get_json()["data"]
    assert data["bills_paid"] == first["bills_paid"] == 2
    assert data["total_amount"] == "0.00"
    assert data["payment_reference"] == first["payment_reference"]
    spy.assert_not_called()


def test_residents_sharing_a_key_are_charged_separately(app, client):
    _, _, bob, carol, water, gas = _setup(client)

    first = _pay(client, bob["token"], key="K1")
    second = _pay(client, carol["token"], key="K1")

    assert first.status_code == 200
    assert second.status_code == 200
    bob_data, carol_data = first.get_json()["data"], second.get_json()["data"]
    assert carol_data["bills_paid"] == 2
    assert carol_data["total_amount"] == "65.00"
    assert carol_data["payment_reference"] != bob_data["payment_reference"]
    rows = payments_for_bill(app, water) + payments_for_bill(app, gas)
    assert {status for _, _, status in rows} == {"paid"}


def test_new_key_with_nothing_pending_returns_409(client):
    _, _, bob, _, _, _ = _setup(client)
    _pay(client, bob["token"], key="K1")

    resp = _pay(client, bob["token"], key="K2")

    assert resp.status_code == 409
    assert resp.get_json()["code"] == "NO_PENDING_PAYMENTS"


def test_pay_selected_bills_only(app, client):
    _, _, bob, _, water, gas = _setup(client)

    resp = _pay(client, bob["token"], bill_ids=[gas])

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["bills_paid"] == 1
    assert data["total_amount"] == "15.00"
    statuses = {
        bill_id: dict((uid, status) for uid, _, status in payments_for_bill(app, bill_id))
        for bill_id in (water, gas)
    }
    assert statuses[gas][bob["user"]["id"]] == "paid"
    assert statuses[water][bob["user"]["id"]] == "pending"


def test_selection_with_already_paid_bill_counts_it(client):
    _, _, bob, _, water, gas = _setup(client)
    _pay(client, bob["token"], key="K1", bill_ids=[gas])

    resp = _pay(client, bob["token"], key="K2", bill_ids=[water, gas])

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["bills_paid"] == 2
    assert data["total_amount"] == "50.00"


def test_bill_not_owed_returns_403(client):
    alice, _, bob, _, _, _ = _setup(client)
    other = make_apartment(client, alice["token"], name="Other")
    invite_and_join(client, alice["token"], other["id"], "dave")
    foreign = create_bill(client, alice["token"], other["id"]).get_json()["data"]["bill_id"]

    resp = _pay(client, bob["token"], bill_ids=[foreign])

    assert resp.status_code == 403
    body = resp.get_json()
    assert body["code"] == "PAYMENT_NOT_OWNED"
    assert body["field"] == "bill_ids"


def test_unknown_bill_returns_404(client):
    _, _, bob, _, water, _ = _setup(client)
    resp = _pay(client, bob["token"], bill_ids=[water, 9999])
    assert resp.status_code == 404
    assert resp.get_json()["code"] == "BILL_NOT_FOUND"


def test_gateway_failure_returns_502_and_changes_nothing(app, client, sidecars):
    _, _, bob, _, water, _ = _setup(client)

    with patch.object(
        sidecars.gateway, "pay_bills", side_effect=PaymentGatewayError("card declined"),
    ):
        resp = _pay(client, bob["token"])

    assert resp.status_code == 502
    assert resp.get_json()["code"] == "PAYMENT_FAILED"
    assert all(status == "pending" for _, _, status in payments_for_bill(app, water))


def test_missing_idempotency_key_returns_400(client):
    _, _, bob, _, _, _ = _setup(client)
    resp = client.post("/v1/bills/pay", json={}, headers=auth_headers(bob["token"]))
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["code"] == "MISSING_FIELD"
    assert body["field"] == "idempotency_key"


def test_manager_account_cannot_pay_when_not_sharing(client):
    alice, _, _, _, _, _ = _setup(client)
    resp = _pay(client, alice["token"])
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "ROLE_NOT_ALLOWED"


def test_manager_pays_own_share_when_sharing(app, client):
    app.config["INCLUDE_MANAGER_IN_SPLIT"] = True
    alice = signup(client, "alice")
    apartment = make_apartment(client, alice["token"])
    invite_and_join(client, alice["token"], apartment["id"], "bob")
    bill_id = create_bill(client, alice["token"], apartment["id"]).get_json()["data"]["bill_id"]

    resp = _pay(client, alice["token"])

    assert resp.status_code == 200
    assert resp.get_json()["data"]["total_amount"] == "50.00"
    assert (alice["user"]["id"], "50.00", "paid") in payments_for_bill(app, bill_id)
