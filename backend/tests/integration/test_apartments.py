"""
tests/integration/test_apartments.py — Apartment lifecycle, membership
listing, leaving, the cascade on delete, and the manager's view of the
residents of their apartments.
"""

from __future__ import annotations

import io
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from backend.app.extensions import db
from backend.app.models.bill import Bill
from backend.app.models.membership import Membership
from backend.app.models.payment import Payment
from backend.app.models.user import User

from .conftest import (
    auth_headers,
    create_bill,
    invite,
    invite_and_join,
    join,
    make_apartment,
    signup,
)


class TestApartmentCrud:

    def test_create_apartment_adds_manager_membership(self, app, client):
        alice = signup(client, "alice")
        apartment = make_apartment(client, alice["token"], name="Sunny", units_count=10)

        assert apartment["name"] == "Sunny"
        assert apartment["units_count"] == 10
        assert apartment["manager_id"] == alice["user"]["id"]

        with app.app_context():
            rows = db.session.execute(
                select(Membership).where(Membership.apartment_id == apartment["id"])
            ).scalars().all()
            assert [(m.user_id, m.is_manager) for m in rows] == [(alice["user"]["id"], True)]

    def test_units_count_must_be_positive(self, client):
        alice = signup(client, "alice")
        resp = client.post(
            "/v1/manager/apartment/create",
            json={"name": "Sunny", "units_count": 0},
            headers=auth_headers(alice["token"]),
        )
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "units_count"

    def test_get_and_update_apartment(self, client):
        alice = signup(client, "alice")
        apartment = make_apartment(client, alice["token"])
        headers = auth_headers(alice["token"])

        resp = client.put(
            "/v1/manager/apartment/update",
            json={"id": apartment["id"], "name": "Sunnier", "units_count": 12},
            headers=headers,
        )
        assert resp.status_code == 200

        resp = client.get(f"/v1/manager/apartment/get?id={apartment['id']}", headers=headers)
        data = resp.get_json()["data"]
        assert data["name"] == "Sunnier"
        assert data["units_count"] == 12
        assert data["address"] == "1 Main St"

    def test_get_unknown_apartment_returns_404(self, client):
        alice = signup(client, "alice")
        resp = client.get("/v1/manager/apartment/get?id=9999", headers=auth_headers(alice["token"]))
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "APARTMENT_NOT_FOUND"

    def test_missing_id_query_returns_400(self, client):
        alice = signup(client, "alice")
        resp = client.get("/v1/manager/apartment/get", headers=auth_headers(alice["token"]))
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "MISSING_FIELD"


class TestMembers:

    def test_residents_lists_manager_and_residents(self, client):
        alice = signup(client, "alice")
        apartment = make_apartment(client, alice["token"])
        bob = invite_and_join(client, alice["token"], apartment["id"], "bob")

        resp = client.get(
            f"/v1/manager/apartment/residents?id={apartment['id']}",
            headers=auth_headers(alice["token"]),
        )

        assert resp.status_code == 200
        members = resp.get_json()["data"]
        assert [(m["id"], m["is_manager"]) for m in members] == [
            (alice["user"]["id"], True),
            (bob["user"]["id"], False),
        ]

    def test_resident_apartments_lists_role(self, client):
        alice = signup(client, "alice")
        apartment = make_apartment(client, alice["token"])
        bob = invite_and_join(client, alice["token"], apartment["id"], "bob")

        resp = client.get("/v1/resident/apartments", headers=auth_headers(bob["token"]))

        data = resp.get_json()["data"]
        assert [(a["id"], a["is_manager"]) for a in data] == [(apartment["id"], False)]

    def test_resident_can_leave(self, client):
        alice = signup(client, "alice")
        apartment = make_apartment(client, alice["token"])
        bob = invite_and_join(client, alice["token"], apartment["id"], "bob")

        resp = client.post(
            f"/v1/resident/apartment/leave?apartment_id={apartment['id']}",
            headers=auth_headers(bob["token"]),
        )
        assert resp.status_code == 200

        resp = client.get("/v1/resident/apartments", headers=auth_headers(bob["token"]))
        assert resp.get_json()["data"] == []

    def test_leave_when_not_member_returns_409(self, client):
        alice = signup(client, "alice")
        apartment = make_apartment(client, alice["token"])
        carol = signup(client, "carol", "resident")

        resp = client.post(
            f"/v1/resident/apartment/leave?apartment_id={apartment['id']}",
            headers=auth_headers(carol["token"]),
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "NOT_A_MEMBER"

    def test_manager_cannot_leave(self, client):
        alice = signup(client, "alice")
        apartment = make_apartment(client, alice["token"])

        resp = client.post(
            f"/v1/resident/apartment/leave?apartment_id={apartment['id']}",
            headers=auth_headers(alice["token"]),
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "MANAGER_CANNOT_LEAVE"


def test_delete_apartment_cascades_bills_payments_and_memberships(app, client, sidecars):
    alice = signup(client, "alice")
    apartment = make_apartment(client, alice["token"])
    bob = invite_and_join(client, alice["token"], apartment["id"], "bob")
    carol = invite_and_join(client, alice["token"], apartment["id"], "carol")
    for total in ("100.00", "60.00"):
        resp = create_bill(client, alice["token"], apartment["id"], total_amount=total)
        assert resp.status_code == 201
    other = make_apartment(client, alice["token"], name="Other")

    resp = client.delete(
        f"/v1/manager/apartment/delete?id={apartment['id']}",
        headers=auth_headers(alice["token"]),
    )

    assert resp.status_code == 200
    with app.app_context():
        assert db.session.scalar(
            select(func.count()).select_from(Bill).where(Bill.apartment_id == apartment["id"])
        ) == 0
        assert db.session.scalar(select(func.count()).select_from(Payment)) == 0
        remaining = db.session.execute(select(Membership.apartment_id)).scalars().all()
        assert remaining == [other["id"]]
        user_ids = set(db.session.execute(select(User.id)).scalars().all())
        assert {alice["user"]["id"], bob["user"]["id"], carol["user"]["id"]} <= user_ids


def test_delete_apartment_removes_bill_images(client, sidecars):
    alice = signup(client, "alice")
    apartment = make_apartment(client, alice["token"])
    invite_and_join(client, alice["token"], apartment["id"], "bob")
    resp = client.post(
        f"/v1/manager/apartment/{apartment['id']}/bills",
        data={
            "type": "gas",
            "total_amount": "40.00",
            "due_date": "2024-02-01",
            "image": (io.BytesIO(b"png-bytes"), "receipt.png"),
        },
        headers=auth_headers(alice["token"]),
        content_type="multipart/form-data",
    )
    assert resp.status_code == 201

    client.delete(
        f"/v1/manager/apartment/delete?id={apartment['id']}",
        headers=auth_headers(alice["token"]),
    )

    sidecars.images.delete.assert_called_once_with("bills/receipt.png")


def test_failed_commit_keeps_apartment_images(app, client, sidecars):
    alice = signup(client, "alice")
    apartment = make_apartment(client, alice["token"])
    invite_and_join(client, alice["token"], apartment["id"], "bob")
    create_bill(
        client, alice["token"], apartment["id"],
        image=(io.BytesIO(b"png-bytes"), "receipt.png"),
    )

    with patch.object(
        Session, "commit", side_effect=OperationalError("COMMIT", {}, Exception("connection lost")),
    ):
        resp = client.delete(
            f"/v1/manager/apartment/delete?id={apartment['id']}",
            headers=auth_headers(alice["token"]),
        )

    assert resp.status_code == 500
    sidecars.images.delete.assert_not_called()
    with app.app_context():
        assert db.session.scalar(select(func.count()).select_from(Bill)) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Manager view of residents
# ═══════════════════════════════════════════════════════════════════════════

class TestManagedResidents:

    @staticmethod
    def _setup(client):
        """
        alice manages Sunny (bob, carol); dave manages Shady (erin, bob).
        """
        alice = signup(client, "alice")
        dave = signup(client, "dave")
        sunny = make_apartment(client, alice["token"], name="Sunny")
        shady = make_apartment(client, dave["token"], name="Shady")
        bob = invite_and_join(client, alice["token"], sunny["id"], "bob")
        carol = invite_and_join(client, alice["token"], sunny["id"], "carol")
        erin = invite_and_join(client, dave["token"], shady["id"], "erin")
        token = invite(client, dave["token"], shady["id"], "@bob_tg").get_json()["data"]["token"]
        assert join(client, bob["token"], token).status_code == 200
        return alice, dave, sunny, shady, bob, carol, erin

    def test_get_all_lists_only_own_residents(self, client):
        alice, _, sunny, _, bob, carol, _ = self._setup(client)

        resp = client.get("/v1/manager/user/get-all", headers=auth_headers(alice["token"]))

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert [(u["id"], u["apartment_ids"]) for u in data] == [
            (bob["user"]["id"], [sunny["id"]]),
            (carol["user"]["id"], [sunny["id"]]),
        ]
        assert all("password_hash" not in u for u in data)

    def test_get_one_resident(self, client):
        alice, _, sunny, _, bob, _, _ = self._setup(client)

        resp = client.get(
            f"/v1/manager/user/get/{bob['user']['id']}",
            headers=auth_headers(alice["token"]),
        )

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["username"] == "bob"
        assert data["apartment_ids"] == [sunny["id"]]

    def test_get_someone_elses_resident_returns_403(self, client):
        alice, _, _, _, _, _, erin = self._setup(client)

        resp = client.get(
            f"/v1/manager/user/get/{erin['user']['id']}",
            headers=auth_headers(alice["token"]),
        )

        assert resp.status_code == 403
        assert resp.get_json()["code"] == "FORBIDDEN"

    def test_get_unknown_user_returns_404(self, client):
        alice, *_ = self._setup(client)

        resp = client.get("/v1/manager/user/get/99999", headers=auth_headers(alice["token"]))

        assert resp.status_code == 404
        assert resp.get_json()["code"] == "USER_NOT_FOUND"

    def test_delete_removes_resident_from_own_apartments_only(self, app, client):
        alice, _, sunny, shady, bob, _, _ = self._setup(client)
        bob_id = bob["user"]["id"]

        resp = client.delete(
            f"/v1/manager/user/delete/{bob_id}",
            headers=auth_headers(alice["token"]),
        )

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {"user_id": bob_id, "removed_from": [sunny["id"]]}
        with app.app_context():
            assert db.session.get(Membership, (bob_id, sunny["id"])) is None
            assert db.session.get(Membership, (bob_id, shady["id"])) is not None
            assert db.session.get(User, bob_id) is not None

    def test_delete_someone_elses_resident_returns_403(self, app, client):
        alice, _, _, shady, _, _, erin = self._setup(client)

        resp = client.delete(
            f"/v1/manager/user/delete/{erin['user']['id']}",
            headers=auth_headers(alice["token"]),
        )

        assert resp.status_code == 403
        with app.app_context():
            assert db.session.get(Membership, (erin["user"]["id"], shady["id"])) is not None

    def test_resident_apartments_are_scoped_to_the_caller(self, client):
        alice, dave, sunny, shady, bob, _, erin = self._setup(client)
        url = f"/v1/manager/apartments/get-all/resident/{bob['user']['id']}"

        alice_view = client.get(url, headers=auth_headers(alice["token"])).get_json()["data"]
        dave_view = client.get(url, headers=auth_headers(dave["token"])).get_json()["data"]
        erin_view = client.get(
            f"/v1/manager/apartments/get-all/resident/{erin['user']['id']}",
            headers=auth_headers(alice["token"]),
        ).get_json()["data"]

        assert [a["id"] for a in alice_view] == [sunny["id"]]
        assert [a["id"] for a in dave_view] == [shady["id"]]
        assert erin_view == []

    def test_residents_cannot_use_manager_user_routes(self, client):
        _, _, _, _, bob, _, _ = self._setup(client)

        resp = client.get("/v1/manager/user/get-all", headers=auth_headers(bob["token"]))

        assert resp.status_code == 401
        assert resp.get_json()["code"] == "ROLE_NOT_ALLOWED"
