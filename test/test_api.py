"""
HTTP surface: routes wired to the lifecycle engine with an in-memory repository and a
recording outbox in place of Postgres and Redis.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.deps import get_repository
from app.main import app
from app.permissions import Actor, PermissionSet

from conftest import InMemoryRepository

ADMIN = {"X-Actor-Id": "ADMIN_001"}
DISPATCHER = {"X-Actor-Id": "STAFF_DISPATCH"}
SALES = {"X-Actor-Id": "STAFF_SALES"}

NEW_ORDER = {
    "customer": {"full_name": "Rahul Sharma", "mobile_number": "9876543210"},
    "items": [{"name": "Widget", "quantity": 2, "unit_price": 500}],
    "payment_method": "Prepaid",
    "admin_notes": "VIP customer",
}


@pytest.fixture
def repo():
    repo = InMemoryRepository()
    repo.staff["STAFF_DISPATCH"] = Actor(
        id="STAFF_DISPATCH", name="Dispatcher", permissions=PermissionSet(can_change_status=True),
    )
    repo.staff["STAFF_SALES"] = Actor(
        id="STAFF_SALES", name="Sales", permissions=PermissionSet(can_add_orders=True, can_edit_details=True),
    )
    return repo


@pytest.fixture
def published(monkeypatch):
    events = []

    async def fake_publish(order):
        events.append(order)

    monkeypatch.setattr("app.routes.orders.publish_status_event", fake_publish)
    return events


@pytest.fixture
def client(repo, published):
    app.dependency_overrides[get_repository] = lambda: repo
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, headers=ADMIN):
    resp = client.post("/orders", json=NEW_ORDER, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestOrders:
    def test_create_and_fetch(self, client, repo):
        body = _create(client)
        assert Decimal(body["total_amount"]) == 1000
        assert Decimal(body["balance_amount"]) == 1000
        assert body["current_status"] == "Placed"
        assert len(body["history"]) == 1
        assert body["id"] in repo.orders
        assert client.get(f"/orders/{body['id']}").json()["id"] == body["id"]

    def test_create_without_actor_is_forbidden(self, client, repo):
        resp = client.post("/orders", json=NEW_ORDER)
        assert resp.status_code == 403
        assert resp.json()["error"] == "permission_denied"
        assert repo.orders == {}

    def test_invalid_body_is_422(self, client):
        bad = {**NEW_ORDER, "items": [{"name": "Widget", "quantity": 0, "unit_price": 500}]}
        assert client.post("/orders", json=bad, headers=ADMIN).status_code == 422

    def test_unknown_order_is_404(self, client):
        resp = client.get("/orders/ORD-NOPE")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_search(self, client):
        created = _create(client)
        assert client.get("/orders", params={"q": "rahul"}).json()["count"] == 1
        assert client.get("/orders", params={"q": "nobody"}).json()["count"] == 0
        listing = client.get("/orders", params={"status": "Placed"}, headers=DISPATCHER).json()
        assert [o["id"] for o in listing["orders"]] == [created["id"]]

    def test_anonymous_reads_hide_admin_notes(self, client):
        order_id = _create(client)["id"]
        one = client.get(f"/orders/{order_id}").json()
        assert one["id"] == order_id
        assert "admin_notes" not in one
        found = client.get("/orders", params={"q": order_id}).json()["orders"]
        assert [o["id"] for o in found] == [order_id]
        assert "admin_notes" not in found[0]

    def test_staff_reads_include_admin_notes(self, client):
        order_id = _create(client)["id"]
        assert client.get(f"/orders/{order_id}", headers=DISPATCHER).json()["admin_notes"] == "VIP customer"
        listing = client.get("/orders", headers=DISPATCHER).json()
        assert listing["orders"][0]["admin_notes"] == "VIP customer"

    @pytest.mark.parametrize("params", [{}, {"q": "  "}, {"status": "Placed"}])
    def test_anonymous_listing_needs_search_term(self, client, params):
        _create(client)
        resp = client.get("/orders", params=params)
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"

    def test_deactivated_staff_get_customer_view(self, client):
        client.put("/staff/STAFF_DISPATCH", json={"is_active": False}, headers=ADMIN)
        order_id = _create(client)["id"]
        assert "admin_notes" not in client.get(f"/orders/{order_id}", headers=DISPATCHER).json()
        assert client.get("/orders", headers=DISPATCHER).status_code == 422

    def test_edit(self, client):
        order_id = _create(client, SALES)["id"]
        resp = client.patch(f"/orders/{order_id}", json={"courier_tracking_url": "https://track.example/1"}, headers=SALES)
        assert resp.status_code == 200
        assert resp.json()["courier_tracking_url"] == "https://track.example/1"
        denied = client.patch(f"/orders/{order_id}", json={"advance_amount": 100}, headers=SALES)
        assert denied.status_code == 403

    def test_delete_is_admin_only(self, client, repo):
        order_id = _create(client)["id"]
        assert client.delete(f"/orders/{order_id}", headers=DISPATCHER).status_code == 403
        assert order_id in repo.orders
        assert client.delete(f"/orders/{order_id}", headers=ADMIN).status_code == 200
        assert order_id not in repo.orders


class TestTransitions:
    def test_transition_saves_and_publishes(self, client, repo, published):
        order_id = _create(client)["id"]
        resp = client.post(f"/orders/{order_id}/transitions", json={"status": "Shipped"}, headers=DISPATCHER)
        assert resp.status_code == 200
        assert resp.json()["current_status"] == "Shipped"
        assert repo.orders[order_id].current_status.value == "Shipped"
        assert [o.current_status.value for o in published] == ["Shipped"]

    def test_resubmitting_status_does_not_publish(self, client, published):
        order_id = _create(client)["id"]
        resp = client.post(f"/orders/{order_id}/transitions", json={"status": "Placed"}, headers=ADMIN)
        assert resp.status_code == 200
        assert published == []

    def test_permission_denied_leaves_order_unchanged(self, client, repo):
        order_id = _create(client)["id"]
        before = repo.orders[order_id]
        resp = client.post(f"/orders/{order_id}/transitions", json={"status": "Shipped"}, headers=SALES)
        assert resp.status_code == 403
        assert repo.orders[order_id] is before

    def test_illegal_transition_is_409(self, client):
        order_id = _create(client)["id"]
        client.post(f"/orders/{order_id}/transitions", json={"status": "Cancelled"}, headers=ADMIN)
        resp = client.post(f"/orders/{order_id}/transitions", json={"status": "Confirmed"}, headers=ADMIN)
        assert resp.status_code == 409
        assert resp.json()["error"] == "illegal_transition"

    def test_allowed_transitions_follow_actor(self, client):
        order_id = _create(client)["id"]
        allowed = client.get(f"/orders/{order_id}/transitions", headers=DISPATCHER).json()["allowed"]
        assert "Shipped" in allowed
        assert "Cancelled" in allowed
        assert client.get(f"/orders/{order_id}/transitions", headers=SALES).json()["allowed"] == []


class TestCustomerReturns:
    def test_return_flow(self, client, published):
        order_id = _create(client)["id"]
        client.post(f"/orders/{order_id}/transitions", json={"status": "Delivered"}, headers=ADMIN)

        track = client.get(f"/orders/{order_id}/track").json()
        assert track["can_request_return"]
        assert "admin_notes" not in track["order"]
        assert track["timeline"][-1]["status"] == "Delivered"

        body = {"reason": "Wrong Item Received", "return_type": "Refund"}
        resp = client.post(f"/orders/{order_id}/returns", json=body)
        assert resp.status_code == 201
        assert resp.json()["current_status"] == "Return Requested"
        assert resp.json()["return_details"]["refund_status"] == "Pending"
        assert "admin_notes" not in resp.json()
        assert published[-1].current_status.value == "Return Requested"

        again = client.post(f"/orders/{order_id}/returns", json=body)
        assert again.status_code == 409
        assert again.json()["error"] == "illegal_transition"

    def test_refund_on_replacement_is_invalid_return_state(self, client):
        order_id = _create(client)["id"]
        client.post(f"/orders/{order_id}/transitions", json={"status": "Delivered"}, headers=ADMIN)
        client.post(f"/orders/{order_id}/returns", json={"reason": "Size Issue", "return_type": "Replacement"})
        resp = client.post(f"/orders/{order_id}/transitions", json={"status": "Refund Initiated"}, headers=ADMIN)
        assert resp.status_code == 409
        assert resp.json()["error"] == "invalid_return_state"


class TestStaffRoutes:
    def test_admin_manages_roster(self, client, repo):
        resp = client.post("/staff", json={"name": "Packer"}, headers=ADMIN)
        assert resp.status_code == 201
        staff_id = resp.json()["id"]
        assert repo.staff[staff_id].permissions.can_add_orders

        resp = client.put(f"/staff/{staff_id}", json={"is_active": False}, headers=ADMIN)
        assert resp.json()["is_active"] is False

        names = [s["name"] for s in client.get("/staff", headers=ADMIN).json()["staff"]]
        assert "Packer" in names

        assert client.delete(f"/staff/{staff_id}", headers=ADMIN).status_code == 200
        assert staff_id not in repo.staff

    def test_staff_cannot_manage_roster(self, client):
        assert client.get("/staff", headers=DISPATCHER).status_code == 403
        assert client.post("/staff", json={"name": "X"}, headers=DISPATCHER).status_code == 403

    def test_deactivated_staff_is_denied(self, client):
        client.put("/staff/STAFF_DISPATCH", json={"is_active": False}, headers=ADMIN)
        order_id = _create(client)["id"]
        resp = client.post(f"/orders/{order_id}/transitions", json={"status": "Shipped"}, headers=DISPATCHER)
        assert resp.status_code == 403


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
