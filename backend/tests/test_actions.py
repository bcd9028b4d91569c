"""Tests for guest requests to floor staff."""

import pytest

from restopos.models.notification import Notification, NotificationType


@pytest.fixture
def bill_request(client, open_session) -> dict:
    res = client.post("/api/v1/customer/actions", headers=open_session["guest_headers"],
                      json={"action_type": "REQUEST_BILL", "description": "Paying by card"})
    assert res.status_code == 201, res.text
    return res.json()


class TestGuestActions:
    def test_guest_raises_request(self, bill_request, open_session):
        assert bill_request["status"] == "PENDING"
        assert bill_request["session_id"] == open_session["session_id"]
        assert bill_request["table_number"] == 5
        assert bill_request["handled_by_id"] is None

    def test_request_notifies_floor(self, db_session, waiter_user, bill_request):
        note = (
            db_session.query(Notification)
            .filter(Notification.user_id == waiter_user.id, Notification.type == NotificationType.CUSTOMER_REQUEST)
            .one()
        )
        assert note.message == "Table #5 asked for the bill: Paying by card"
        assert note.data["action_id"] == bill_request["id"]

    def test_guest_sees_own_requests(self, client, open_session, bill_request):
        res = client.get("/api/v1/customer/actions", headers=open_session["guest_headers"])
        assert [a["id"] for a in res.json()] == [bill_request["id"]]

    def test_session_id_in_body_ignored_for_guests(self, client, db_session, open_session):
        res = client.post("/api/v1/customer/actions", headers=open_session["guest_headers"],
                          json={"session_id": 999, "action_type": "CALL_WAITER"})
        assert res.status_code == 201
        assert res.json()["session_id"] == open_session["session_id"]

    def test_unknown_type(self, client, open_session):
        res = client.post("/api/v1/customer/actions", headers=open_session["guest_headers"],
                          json={"action_type": "DANCE"})
        assert res.status_code == 422

    def test_requires_session_headers(self, client):
        assert client.post("/api/v1/customer/actions", json={"action_type": "CALL_WAITER"}).status_code == 401


class TestStaffActions:
    def test_list(self, client, waiter_headers, bill_request):
        res = client.get("/api/v1/actions/", headers=waiter_headers)
        assert res.status_code == 200
        assert [a["action_type"] for a in res.json()] == ["REQUEST_BILL"]
        assert client.get("/api/v1/actions/?status=COMPLETED", headers=waiter_headers).json() == []

    def test_handle_request(self, client, waiter_user, waiter_headers, bill_request):
        url = f"/api/v1/actions/{bill_request['id']}/status"
        res = client.patch(url, headers=waiter_headers, json={"status": "IN_PROGRESS"})
        assert res.status_code == 200
        assert res.json()["handled_by_id"] == waiter_user.id
        res = client.patch(url, headers=waiter_headers, json={"status": "COMPLETED"})
        assert res.status_code == 200
        assert res.json()["completed_at"]

    def test_completed_is_final(self, client, waiter_headers, bill_request):
        url = f"/api/v1/actions/{bill_request['id']}/status"
        client.patch(url, headers=waiter_headers, json={"status": "COMPLETED"})
        res = client.patch(url, headers=waiter_headers, json={"status": "IN_PROGRESS"})
        assert res.status_code == 409
        assert res.json()["details"] == {"from": "COMPLETED", "to": "IN_PROGRESS"}

    def test_staff_create_needs_session(self, client, waiter_headers, open_session):
        res = client.post("/api/v1/actions/", headers=waiter_headers, json={"action_type": "REQUEST_WATER"})
        assert res.status_code == 422
        res = client.post("/api/v1/actions/", headers=waiter_headers,
                          json={"session_id": open_session["session_id"], "action_type": "REQUEST_WATER"})
        assert res.status_code == 201

    def test_closed_session_rejected(self, client, waiter_headers, open_session):
        client.post(f"/api/v1/sessions/{open_session['session_id']}/close", headers=waiter_headers)
        res = client.post("/api/v1/actions/", headers=waiter_headers,
                          json={"session_id": open_session["session_id"], "action_type": "OTHER"})
        assert res.status_code == 409

    def test_unknown_action(self, client, waiter_headers):
        res = client.patch("/api/v1/actions/9999/status", headers=waiter_headers, json={"status": "COMPLETED"})
        assert res.status_code == 404

    def test_kitchen_cannot_handle(self, client, kitchen_headers, bill_request):
        assert client.get("/api/v1/actions/", headers=kitchen_headers).status_code == 403
        res = client.patch(f"/api/v1/actions/{bill_request['id']}/status", headers=kitchen_headers,
                           json={"status": "COMPLETED"})
        assert res.status_code == 403
