"""Tests for orders: creation, line edits, status cascades and bills."""

import pytest
from decimal import Decimal

from restopos.models.order import Order, OrderItemStatus, OrderStatus


@pytest.fixture
def guest_order(client, menu, open_session) -> dict:
    """Two Pho Bo and one Iced Tea ordered from table #5."""
    res = client.post("/api/v1/customer/orders", headers=open_session["guest_headers"], json={
        "items": [
            {"menu_item_id": menu["pho"].id, "quantity": 2, "notes": "no onions"},
            {"menu_item_id": menu["tea"].id},
        ],
    })
    assert res.status_code == 201, res.text
    return res.json()


# ============== Creation ==============

class TestCreateOrder:
    def test_guest_order_snapshots_prices(self, client, db_session, menu, guest_order):
        assert guest_order["status"] == "PENDING"
        assert guest_order["order_type"] == "DINE_IN"
        assert guest_order["table_number"] == 5
        assert guest_order["code"] == f"{guest_order['id']:06d}"
        pho = guest_order["items"][0]
        assert pho["item_name"] == "Pho Bo"
        assert Decimal(pho["unit_price"]) == Decimal("10.00")
        assert Decimal(pho["line_total"]) == Decimal("20.00")

        # Later price changes do not touch existing lines
        menu["pho"].price = Decimal("12.00")
        db_session.commit()
        order = db_session.get(Order, guest_order["id"])
        assert order.items[0].unit_price == Decimal("10.00")

    def test_staff_dine_in_order(self, client, menu, waiter_headers, open_session):
        res = client.post("/api/v1/orders/", headers=waiter_headers, json={
            "session_id": open_session["session_id"],
            "items": [{"menu_item_id": menu["tea"].id, "quantity": 3}],
            "auto_confirm": True,
        })
        assert res.status_code == 201
        assert res.json()["status"] == "CONFIRMED"
        assert res.json()["confirmed_by_id"] is not None

    def test_takeaway_order(self, client, menu, cashier_headers):
        res = client.post("/api/v1/orders/", headers=cashier_headers, json={
            "order_type": "TAKEAWAY",
            "customer_name": "Lan",
            "customer_phone": "0901234567",
            "items": [{"menu_item_id": menu["pho"].id}],
        })
        assert res.status_code == 201
        data = res.json()
        assert data["session_id"] is None
        assert data["customer_name"] == "Lan"

    def test_takeaway_needs_contact(self, client, menu, cashier_headers):
        res = client.post("/api/v1/orders/", headers=cashier_headers, json={
            "order_type": "TAKEAWAY", "items": [{"menu_item_id": menu["pho"].id}],
        })
        assert res.status_code == 422

    def test_unavailable_item_rejected(self, client, db_session, menu, open_session):
        res = client.post("/api/v1/customer/orders", headers=open_session["guest_headers"], json={
            "items": [{"menu_item_id": menu["pho"].id}, {"menu_item_id": menu["special"].id}],
        })
        assert res.status_code == 422
        assert res.json()["details"]["unavailable"] == ["Seasonal Special"]
        assert db_session.query(Order).count() == 0

    def test_unknown_item_rejected(self, client, menu, open_session):
        res = client.post("/api/v1/customer/orders", headers=open_session["guest_headers"], json={
            "items": [{"menu_item_id": 9999}],
        })
        assert res.status_code == 422
        assert res.json()["details"]["missing"] == [9999]

    def test_empty_order_rejected(self, client, menu, open_session):
        res = client.post("/api/v1/customer/orders", headers=open_session["guest_headers"], json={"items": []})
        assert res.status_code == 422

    def test_closed_session_rejected(self, client, menu, waiter_headers, open_session):
        client.post(f"/api/v1/sessions/{open_session['session_id']}/close", headers=waiter_headers)
        res = client.post("/api/v1/orders/", headers=waiter_headers, json={
            "session_id": open_session["session_id"],
            "items": [{"menu_item_id": menu["tea"].id}],
        })
        assert res.status_code == 409

    def test_kitchen_cannot_create(self, client, menu, kitchen_headers, open_session):
        res = client.post("/api/v1/orders/", headers=kitchen_headers, json={
            "session_id": open_session["session_id"],
            "items": [{"menu_item_id": menu["tea"].id}],
        })
        assert res.status_code == 403


# ============== Guest scoping ==============

class TestGuestScope:
    def test_guest_lists_own_orders(self, client, open_session, guest_order):
        res = client.get("/api/v1/customer/orders", headers=open_session["guest_headers"])
        assert res.status_code == 200
        assert [o["id"] for o in res.json()] == [guest_order["id"]]

    def test_other_session_cannot_see_orders(self, client, manager_headers, waiter_headers, menu, guest_order):
        other_table = client.post("/api/v1/tables/", headers=manager_headers, json={"number": 6}).json()
        other = client.post("/api/v1/sessions/", headers=waiter_headers,
                            json={"table_id": other_table["id"]}).json()
        headers = {"X-Table-Session": str(other["session_id"]), "X-Table-Secret": other["session_secret"]}
        assert client.get("/api/v1/customer/orders", headers=headers).json() == []

    def test_wrong_secret(self, client, open_session):
        headers = {"X-Table-Session": str(open_session["session_id"]), "X-Table-Secret": "wrong"}
        assert client.get("/api/v1/customer/orders", headers=headers).status_code == 401

    def test_missing_headers(self, client):
        assert client.get("/api/v1/customer/menu").status_code == 401


# ============== Line edits ==============

class TestLineEdits:
    def test_add_items(self, client, menu, waiter_headers, guest_order):
        res = client.post(f"/api/v1/orders/{guest_order['id']}/items", headers=waiter_headers,
                          json={"items": [{"menu_item_id": menu["tea"].id, "quantity": 2}]})
        assert res.status_code == 200
        assert len(res.json()["items"]) == 3

    def test_update_quantity(self, client, waiter_headers, guest_order):
        item = guest_order["items"][1]
        res = client.patch(f"/api/v1/orders/{guest_order['id']}/items/{item['id']}", headers=waiter_headers,
                           json={"quantity": 4})
        assert res.status_code == 200
        assert res.json()["quantity"] == 4
        assert Decimal(res.json()["line_total"]) == Decimal("10.00")

    def test_remove_item(self, client, waiter_headers, guest_order):
        item = guest_order["items"][1]
        res = client.delete(f"/api/v1/orders/{guest_order['id']}/items/{item['id']}", headers=waiter_headers)
        assert res.status_code == 200
        assert [i["item_name"] for i in res.json()["items"]] == ["Pho Bo"]

    def test_cannot_remove_last_item(self, client, waiter_headers, guest_order):
        first, second = guest_order["items"]
        client.delete(f"/api/v1/orders/{guest_order['id']}/items/{second['id']}", headers=waiter_headers)
        res = client.delete(f"/api/v1/orders/{guest_order['id']}/items/{first['id']}", headers=waiter_headers)
        assert res.status_code == 409

    def test_item_of_other_order(self, client, waiter_headers, guest_order):
        res = client.patch(f"/api/v1/orders/{guest_order['id']}/items/9999", headers=waiter_headers,
                           json={"quantity": 2})
        assert res.status_code == 404


# ============== Status changes ==============

class TestOrderStatus:
    def test_confirm(self, client, waiter_headers, guest_order):
        res = client.patch(f"/api/v1/orders/{guest_order['id']}/status", headers=waiter_headers,
                           json={"status": "CONFIRMED"})
        assert res.status_code == 200
        assert res.json()["status"] == "CONFIRMED"

    def test_order_status_cascades_to_items(self, client, waiter_headers, guest_order):
        res = client.patch(f"/api/v1/orders/{guest_order['id']}/status", headers=waiter_headers,
                           json={"status": "READY"})
        assert res.status_code == 200
        assert {i["status"] for i in res.json()["items"]} == {"READY"}
        assert all(i["ready_at"] for i in res.json()["items"])

    def test_item_changes_pull_order_forward(self, client, waiter_headers, guest_order):
        first, second = guest_order["items"]
        res = client.patch(f"/api/v1/orders/items/{first['id']}/status", headers=waiter_headers,
                           json={"status": "PREPARING"})
        assert res.status_code == 200
        order = client.get(f"/api/v1/orders/{guest_order['id']}", headers=waiter_headers).json()
        assert order["status"] == "PREPARING"

        for item in (first, second):
            client.patch(f"/api/v1/orders/items/{item['id']}/status", headers=waiter_headers,
                         json={"status": "SERVED"})
        order = client.get(f"/api/v1/orders/{guest_order['id']}", headers=waiter_headers).json()
        assert order["status"] == "SERVED"

    def test_cannot_move_backwards(self, client, waiter_headers, guest_order):
        client.patch(f"/api/v1/orders/{guest_order['id']}/status", headers=waiter_headers,
                     json={"status": "READY"})
        res = client.patch(f"/api/v1/orders/{guest_order['id']}/status", headers=waiter_headers,
                           json={"status": "PREPARING"})
        assert res.status_code == 409
        assert res.json()["details"] == {"from": "READY", "to": "PREPARING"}

    def test_complete_requires_served_items(self, client, db_session, waiter_headers, guest_order):
        order = db_session.get(Order, guest_order["id"])
        order.status = OrderStatus.SERVED
        db_session.commit()
        res = client.patch(f"/api/v1/orders/{guest_order['id']}/status", headers=waiter_headers,
                           json={"status": "COMPLETED"})
        assert res.status_code == 409
        assert len(res.json()["details"]["item_ids"]) == 2

    def test_cancel_requires_reason(self, client, waiter_headers, guest_order):
        res = client.patch(f"/api/v1/orders/{guest_order['id']}/status", headers=waiter_headers,
                           json={"status": "CANCELLED"})
        assert res.status_code == 422

    def test_cancel(self, client, waiter_headers, guest_order):
        res = client.post(f"/api/v1/orders/{guest_order['id']}/cancel", headers=waiter_headers,
                          json={"reason": "Kitchen closed"})
        assert res.status_code == 200
        data = res.json()
        assert data["status"] == "CANCELLED"
        assert data["cancel_reason"] == "Kitchen closed"
        assert {i["status"] for i in data["items"]} == {"CANCELLED"}

    def test_cashier_cannot_cancel(self, client, cashier_headers, guest_order):
        res = client.post(f"/api/v1/orders/{guest_order['id']}/cancel", headers=cashier_headers,
                          json={"reason": "Nope"})
        assert res.status_code == 403

    def test_cancelling_every_item_cancels_order(self, client, waiter_headers, guest_order):
        for item in guest_order["items"]:
            res = client.patch(f"/api/v1/orders/items/{item['id']}/status", headers=waiter_headers,
                               json={"status": "CANCELLED", "reason": "Out of stock"})
            assert res.status_code == 200
        order = client.get(f"/api/v1/orders/{guest_order['id']}", headers=waiter_headers).json()
        assert order["status"] == "CANCELLED"
        assert order["cancel_reason"] == "All items cancelled"

    def test_no_changes_after_cancel(self, client, menu, waiter_headers, guest_order):
        client.post(f"/api/v1/orders/{guest_order['id']}/cancel", headers=waiter_headers,
                    json={"reason": "Guest left"})
        res = client.post(f"/api/v1/orders/{guest_order['id']}/items", headers=waiter_headers,
                          json={"items": [{"menu_item_id": menu["tea"].id}]})
        assert res.status_code == 409


# ============== Listing and bills ==============

class TestOrderQueries:
    def test_list_filters(self, client, waiter_headers, open_session, guest_order):
        res = client.get(f"/api/v1/orders/?session_id={open_session['session_id']}&status=PENDING",
                         headers=waiter_headers)
        assert res.status_code == 200
        assert res.json()["total"] == 1
        assert client.get("/api/v1/orders/?status=SERVED", headers=waiter_headers).json()["total"] == 0

    def test_order_bill(self, client, waiter_headers, guest_order):
        res = client.get(f"/api/v1/orders/{guest_order['id']}/bill", headers=waiter_headers)
        assert res.status_code == 200
        bill = res.json()
        assert bill["table_number"] == 5
        assert bill["order_code"] == guest_order["code"]
        assert Decimal(str(bill["subtotal"])) == Decimal("22.50")
        assert Decimal(str(bill["total"])) == Decimal("24.75")

    def test_cancelled_order_has_no_bill(self, client, waiter_headers, guest_order):
        client.post(f"/api/v1/orders/{guest_order['id']}/cancel", headers=waiter_headers,
                    json={"reason": "Guest left"})
        res = client.get(f"/api/v1/orders/{guest_order['id']}/bill", headers=waiter_headers)
        assert res.status_code == 409

    def test_item_statuses_stored(self, db_session, client, waiter_headers, guest_order):
        client.patch(f"/api/v1/orders/{guest_order['id']}/status", headers=waiter_headers,
                     json={"status": "PREPARING"})
        db_session.expire_all()
        order = db_session.get(Order, guest_order["id"])
        assert all(i.status == OrderItemStatus.PREPARING for i in order.items)
        assert all(i.preparing_at is not None for i in order.items)
