"""Tests for customer records."""

import pytest
from datetime import datetime, timedelta, timezone


@pytest.fixture
def customer(client, cashier_headers) -> dict:
    res = client.post("/api/v1/customers/", headers=cashier_headers,
                      json={"name": "Tran Thi Mai", "phone": "0912345678", "email": "mai@phohouse.vn"})
    assert res.status_code == 201, res.text
    return res.json()


class TestCustomers:
    def test_create(self, customer):
        assert customer["name"] == "Tran Thi Mai"
        assert customer["is_active"] is True
        assert customer["created_at"]

    def test_duplicate_phone(self, client, cashier_headers, customer):
        res = client.post("/api/v1/customers/", headers=cashier_headers,
                          json={"name": "Someone Else", "phone": "0912345678"})
        assert res.status_code == 409

    def test_invalid_input(self, client, cashier_headers):
        res = client.post("/api/v1/customers/", headers=cashier_headers, json={"name": "X", "phone": "abc"})
        assert res.status_code == 422
        res = client.post("/api/v1/customers/", headers=cashier_headers,
                          json={"name": "X", "phone": "0900000000", "email": "not-an-email"})
        assert res.status_code == 422

    def test_search(self, client, waiter_headers, customer):
        assert client.get("/api/v1/customers/?search=mai", headers=waiter_headers).json()["total"] == 1
        assert client.get("/api/v1/customers/?search=0912", headers=waiter_headers).json()["total"] == 1
        assert client.get("/api/v1/customers/?search=nobody", headers=waiter_headers).json()["total"] == 0

    def test_update(self, client, cashier_headers, customer):
        res = client.patch(f"/api/v1/customers/{customer['id']}", headers=cashier_headers,
                           json={"phone": "0987654321"})
        assert res.status_code == 200
        assert res.json()["phone"] == "0987654321"

    def test_update_to_taken_phone(self, client, cashier_headers, customer):
        other = client.post("/api/v1/customers/", headers=cashier_headers,
                            json={"name": "Le Van Nam", "phone": "0933333333"}).json()
        res = client.patch(f"/api/v1/customers/{other['id']}", headers=cashier_headers,
                           json={"phone": "0912345678"})
        assert res.status_code == 409

    def test_deactivate_and_restore(self, client, cashier_headers, customer):
        res = client.post(f"/api/v1/customers/{customer['id']}/deactivate", headers=cashier_headers)
        assert res.json()["is_active"] is False
        assert client.get(f"/api/v1/customers/{customer['id']}", headers=cashier_headers).status_code == 404
        assert client.get("/api/v1/customers/", headers=cashier_headers).json()["total"] == 0
        listing = client.get("/api/v1/customers/?include_deleted=true", headers=cashier_headers).json()
        assert listing["total"] == 1

        res = client.post(f"/api/v1/customers/{customer['id']}/restore", headers=cashier_headers)
        assert res.status_code == 200
        assert res.json()["is_active"] is True

    def test_delete(self, client, cashier_headers, customer):
        assert client.delete(f"/api/v1/customers/{customer['id']}", headers=cashier_headers).status_code == 204
        assert client.get("/api/v1/customers/?include_deleted=true", headers=cashier_headers).json()["total"] == 0

    def test_delete_blocked_by_reservations(self, client, cashier_headers, waiter_headers, test_table, customer):
        at = datetime.now(timezone.utc) + timedelta(days=2)
        res = client.post("/api/v1/reservations/", headers=waiter_headers, json={
            "customer_name": customer["name"], "customer_phone": customer["phone"],
            "table_id": test_table.id, "party_size": 2, "reservation_time": at.isoformat(),
        })
        assert res.status_code == 201
        assert res.json()["customer"]["id"] == customer["id"]
        assert client.delete(f"/api/v1/customers/{customer['id']}", headers=cashier_headers).status_code == 409

    def test_waiter_read_only(self, client, waiter_headers, customer):
        assert client.get(f"/api/v1/customers/{customer['id']}", headers=waiter_headers).status_code == 200
        res = client.patch(f"/api/v1/customers/{customer['id']}", headers=waiter_headers, json={"name": "Mai"})
        assert res.status_code == 403

    def test_kitchen_has_no_access(self, client, kitchen_headers):
        assert client.get("/api/v1/customers/", headers=kitchen_headers).status_code == 403
