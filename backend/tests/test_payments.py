"""Tests for payments: totals validation, settlement, refunds and bank transfers."""

import pytest
from decimal import Decimal
from sqlalchemy import update

from restopos.core.exceptions import ConflictError
from restopos.core.rbac import Capabilities, UserRole
from restopos.models.order import Order, OrderItem, OrderItemStatus, OrderStatus, OrderType
from restopos.models.payment import Payment, PaymentStatus
from restopos.models.table import TableSession, SessionStatus, TableStatus
from restopos.services.payment_service import PaymentService
from restopos.services.transaction_ids import is_valid_transaction_id


@pytest.fixture
def served_session(client, menu, waiter_headers, open_session) -> dict:
    """Table #5 ate two Pho Bo and an Iced Tea, everything served."""
    order = client.post("/api/v1/customer/orders", headers=open_session["guest_headers"], json={
        "items": [{"menu_item_id": menu["pho"].id, "quantity": 2}, {"menu_item_id": menu["tea"].id}],
    }).json()
    res = client.patch(f"/api/v1/orders/{order['id']}/status", headers=waiter_headers, json={"status": "SERVED"})
    assert res.status_code == 200, res.text
    open_session["order"] = order
    return open_session


def session_payment_body(session_id: int, method: str = "CASH", **overrides) -> dict:
    body = {
        "session_id": session_id,
        "subtotal": "22.50",
        "tax": "2.25",
        "discount": "0",
        "total_amount": "24.75",
        "method": method,
    }
    body.update(overrides)
    return body


class TestCreatePayment:
    def test_create_pending(self, client, cashier_headers, served_session):
        res = client.post("/api/v1/payments/", headers=cashier_headers,
                          json=session_payment_body(served_session["session_id"]))
        assert res.status_code == 201, res.text
        data = res.json()
        assert data["status"] == "PENDING"
        assert Decimal(data["total_amount"]) == Decimal("24.75")
        assert is_valid_transaction_id(data["transaction_id"])

    def test_totals_must_add_up(self, client, cashier_headers, served_session):
        res = client.post("/api/v1/payments/", headers=cashier_headers,
                          json=session_payment_body(served_session["session_id"], total_amount="30.00"))
        assert res.status_code == 422
        assert "does not equal" in res.json()["detail"]

    def test_discount_applies(self, client, cashier_headers, served_session):
        res = client.post("/api/v1/payments/", headers=cashier_headers, json=session_payment_body(
            served_session["session_id"], discount="4.75", total_amount="20.00",
        ))
        assert res.status_code == 201

    def test_negative_amount_rejected(self, client, cashier_headers, served_session):
        res = client.post("/api/v1/payments/", headers=cashier_headers,
                          json=session_payment_body(served_session["session_id"], tax="-1"))
        assert res.status_code == 422

    def test_exactly_one_target(self, client, cashier_headers, served_session):
        body = session_payment_body(served_session["session_id"], order_id=served_session["order"]["id"])
        assert client.post("/api/v1/payments/", headers=cashier_headers, json=body).status_code == 422
        body = session_payment_body(served_session["session_id"])
        del body["session_id"]
        assert client.post("/api/v1/payments/", headers=cashier_headers, json=body).status_code == 422

    def test_one_open_payment_per_bill(self, client, cashier_headers, served_session):
        body = session_payment_body(served_session["session_id"])
        assert client.post("/api/v1/payments/", headers=cashier_headers, json=body).status_code == 201
        res = client.post("/api/v1/payments/", headers=cashier_headers, json=body)
        assert res.status_code == 409

    def test_unknown_session(self, client, cashier_headers):
        res = client.post("/api/v1/payments/", headers=cashier_headers, json=session_payment_body(999))
        assert res.status_code == 404

    def test_waiter_cannot_take_payment(self, client, waiter_headers, served_session):
        res = client.post("/api/v1/payments/", headers=waiter_headers,
                          json=session_payment_body(served_session["session_id"]))
        assert res.status_code == 403

    def test_takeaway_order_payment(self, client, menu, cashier_headers):
        order = client.post("/api/v1/orders/", headers=cashier_headers, json={
            "order_type": "TAKEAWAY", "customer_name": "Lan", "customer_phone": "0901234567",
            "items": [{"menu_item_id": menu["tea"].id, "quantity": 2}],
        }).json()
        res = client.post("/api/v1/payments/", headers=cashier_headers, json={
            "order_id": order["id"], "subtotal": "5.00", "tax": "0.50", "total_amount": "5.50", "method": "CARD",
        })
        assert res.status_code == 201
        assert res.json()["order_id"] == order["id"]


class TestSettlement:
    def test_cash_payment_closes_table(self, client, db_session, cashier_headers, test_table, served_session):
        payment = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"])).json()
        res = client.post(f"/api/v1/payments/{payment['id']}/process", headers=cashier_headers)
        assert res.status_code == 200
        assert res.json()["status"] == "PAID"
        assert res.json()["paid_at"]

        db_session.expire_all()
        session = db_session.get(TableSession, served_session["session_id"])
        assert session.status == SessionStatus.CLOSED
        assert session.closed_at is not None
        assert test_table.status == TableStatus.AVAILABLE
        order = db_session.get(Order, served_session["order"]["id"])
        assert order.status == OrderStatus.COMPLETED

    def test_cannot_process_twice(self, client, cashier_headers, served_session):
        payment = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"])).json()
        client.post(f"/api/v1/payments/{payment['id']}/process", headers=cashier_headers)
        res = client.post(f"/api/v1/payments/{payment['id']}/process", headers=cashier_headers)
        assert res.status_code == 409

    def test_banking_needs_matching_transaction_id(self, client, cashier_headers, served_session):
        payment = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"], method="BANKING")).json()
        res = client.post(f"/api/v1/payments/{payment['id']}/process", headers=cashier_headers)
        assert res.status_code == 422
        res = client.post(f"/api/v1/payments/{payment['id']}/process", headers=cashier_headers,
                          json={"transaction_id": payment["transaction_id"].lower()})
        assert res.status_code == 200
        assert res.json()["status"] == "PAID"

    def test_payments_for_session(self, client, cashier_headers, served_session):
        client.post("/api/v1/payments/", headers=cashier_headers,
                    json=session_payment_body(served_session["session_id"]))
        res = client.get(f"/api/v1/payments/session/{served_session['session_id']}", headers=cashier_headers)
        assert res.status_code == 200
        assert len(res.json()) == 1

    def test_list_filters(self, client, cashier_headers, served_session):
        client.post("/api/v1/payments/", headers=cashier_headers,
                    json=session_payment_body(served_session["session_id"]))
        assert client.get("/api/v1/payments/?status=PENDING", headers=cashier_headers).json()["total"] == 1
        assert client.get("/api/v1/payments/?status=PAID", headers=cashier_headers).json()["total"] == 0


class TestRefundsAndFailures:
    @pytest.fixture
    def paid_payment(self, client, cashier_headers, served_session) -> dict:
        payment = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"])).json()
        return client.post(f"/api/v1/payments/{payment['id']}/process", headers=cashier_headers).json()

    def test_manager_refunds(self, client, manager_headers, paid_payment):
        res = client.post(f"/api/v1/payments/{paid_payment['id']}/refund", headers=manager_headers,
                          json={"reason": "Wrong table charged"})
        assert res.status_code == 200
        assert res.json()["status"] == "REFUNDED"
        assert res.json()["refund_reason"] == "Wrong table charged"

    def test_refund_needs_reason(self, client, manager_headers, paid_payment):
        res = client.post(f"/api/v1/payments/{paid_payment['id']}/refund", headers=manager_headers,
                          json={"reason": "  "})
        assert res.status_code == 422

    def test_cashier_cannot_refund(self, client, cashier_headers, paid_payment):
        res = client.post(f"/api/v1/payments/{paid_payment['id']}/refund", headers=cashier_headers,
                          json={"reason": "Because"})
        assert res.status_code == 403

    def test_refund_only_from_paid(self, client, cashier_headers, manager_headers, served_session):
        payment = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"])).json()
        res = client.post(f"/api/v1/payments/{payment['id']}/refund", headers=manager_headers,
                          json={"reason": "Too early"})
        assert res.status_code == 409

    def test_mark_failed_allows_retry(self, client, db_session, cashier_headers, served_session):
        body = session_payment_body(served_session["session_id"], method="CARD")
        payment = client.post("/api/v1/payments/", headers=cashier_headers, json=body).json()
        res = client.post(f"/api/v1/payments/{payment['id']}/fail", headers=cashier_headers,
                          json={"reason": "Card declined"})
        assert res.status_code == 200
        assert res.json()["status"] == "FAILED"
        assert res.json()["failure_reason"] == "Card declined"

        # A failed attempt does not block a new one
        assert client.post("/api/v1/payments/", headers=cashier_headers, json=body).status_code == 201
        assert db_session.query(Payment).filter(Payment.status == PaymentStatus.FAILED).count() == 1

    def test_cannot_fail_paid_payment(self, client, cashier_headers, paid_payment):
        res = client.post(f"/api/v1/payments/{paid_payment['id']}/fail", headers=cashier_headers)
        assert res.status_code == 409


class TestBankTransferInfo:
    def test_transfer_details(self, client, cashier_headers, served_session):
        payment = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"], method="BANKING")).json()
        res = client.get(f"/api/v1/payments/{payment['id']}/bank-transfer", headers=cashier_headers)
        assert res.status_code == 200
        info = res.json()
        assert info["transfer_amount"] == 24750
        assert info["transaction_id"] == payment["transaction_id"]
        assert payment["transaction_id"] in info["content"]
        assert info["qr_code_url"].startswith("https://qr.sepay.vn/img?")
        assert "amount=24750" in info["qr_code_url"]

    def test_not_for_cash(self, client, cashier_headers, served_session):
        payment = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"])).json()
        res = client.get(f"/api/v1/payments/{payment['id']}/bank-transfer", headers=cashier_headers)
        assert res.status_code == 409


class TestBillFreeze:
    def test_payment_refused_while_kitchen_is_busy(self, client, menu, cashier_headers, open_session):
        order = client.post("/api/v1/customer/orders", headers=open_session["guest_headers"],
                            json={"items": [{"menu_item_id": menu["tea"].id}]}).json()
        res = client.post("/api/v1/payments/", headers=cashier_headers, json=session_payment_body(
            open_session["session_id"], subtotal="2.50", tax="0.25", total_amount="2.75",
        ))
        assert res.status_code == 409
        assert res.json()["details"]["order_ids"] == [order["id"]]

        session = client.get(f"/api/v1/sessions/{open_session['session_id']}", headers=cashier_headers).json()
        assert session["status"] == "OPEN"

    def test_guest_cannot_order_once_bill_is_pending(self, client, menu, cashier_headers, served_session):
        client.post("/api/v1/payments/", headers=cashier_headers,
                    json=session_payment_body(served_session["session_id"]))
        res = client.post("/api/v1/customer/orders", headers=served_session["guest_headers"],
                          json={"items": [{"menu_item_id": menu["tea"].id}]})
        assert res.status_code == 409

    def test_no_line_edits_while_bill_is_pending(self, client, menu, waiter_headers, cashier_headers,
                                                 served_session):
        client.post("/api/v1/payments/", headers=cashier_headers,
                    json=session_payment_body(served_session["session_id"]))
        order_id = served_session["order"]["id"]
        res = client.post(f"/api/v1/orders/{order_id}/items", headers=waiter_headers,
                          json={"items": [{"menu_item_id": menu["tea"].id}]})
        assert res.status_code == 409
        item_id = served_session["order"]["items"][0]["id"]
        res = client.patch(f"/api/v1/orders/{order_id}/items/{item_id}", headers=waiter_headers,
                           json={"notes": "extra chili"})
        assert res.status_code == 409

    def test_paid_session_leaves_nothing_open(self, client, db_session, menu, waiter_headers, cashier_headers,
                                              served_session):
        payment = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"])).json()
        assert client.post(f"/api/v1/payments/{payment['id']}/process", headers=cashier_headers).status_code == 200

        db_session.expire_all()
        orders = db_session.query(Order).filter(Order.session_id == served_session["session_id"]).all()
        assert {o.status for o in orders} == {OrderStatus.COMPLETED}
        res = client.post(f"/api/v1/orders/{served_session['order']['id']}/items", headers=waiter_headers,
                          json={"items": [{"menu_item_id": menu["tea"].id}]})
        assert res.status_code == 409

    def test_process_refused_when_order_appears_after_billing(self, client, db_session, menu, cashier_headers,
                                                               served_session):
        payment = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"])).json()
        late = Order(order_type=OrderType.DINE_IN, session_id=served_session["session_id"],
                     status=OrderStatus.PENDING)
        late.items = [OrderItem(menu_item_id=menu["tea"].id, item_name="Iced Tea", unit_price=Decimal("2.50"),
                                quantity=1, status=OrderItemStatus.PENDING)]
        db_session.add(late)
        db_session.commit()

        res = client.post(f"/api/v1/payments/{payment['id']}/process", headers=cashier_headers)
        assert res.status_code == 409
        assert res.json()["details"]["order_ids"] == [late.id]


class TestConcurrentStatusChanges:
    """The loser of two simultaneous status changes gets a conflict."""

    def test_second_settlement_conflicts(self, client, db_session, cashier_user, cashier_headers, served_session):
        created = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"])).json()
        caps = Capabilities.for_role(UserRole.CASHIER, cashier_user.id)
        service = PaymentService(db_session)
        payment = service.get(caps, created["id"])

        # Another till settles the row after this one has loaded it
        db_session.execute(
            update(Payment).where(Payment.id == payment.id).values(status=PaymentStatus.PAID)
            .execution_options(synchronize_session=False)
        )
        assert payment.status == PaymentStatus.PENDING

        with pytest.raises(ConflictError):
            service.process_payment(caps, payment.id)

    def test_second_refund_conflicts(self, client, db_session, manager_user, cashier_headers, served_session):
        created = client.post("/api/v1/payments/", headers=cashier_headers,
                              json=session_payment_body(served_session["session_id"])).json()
        client.post(f"/api/v1/payments/{created['id']}/process", headers=cashier_headers)
        caps = Capabilities.for_role(UserRole.MANAGER, manager_user.id)
        service = PaymentService(db_session)
        payment = service.get(caps, created["id"])
        assert payment.status == PaymentStatus.PAID

        db_session.execute(
            update(Payment).where(Payment.id == payment.id).values(status=PaymentStatus.REFUNDED)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ConflictError):
            service.refund_payment(caps, payment.id, reason="Double charge")
