"""Tests for the SePay bank transfer webhook."""

import pytest

from restopos.core.config import settings
from restopos.models.payment import BankTransfer, TransferOutcome
from restopos.models.table import TableStatus


def sepay_payload(provider_id: int, content: str, amount: int = 24750, transfer_type: str = "in", **extra) -> dict:
    payload = {
        "id": provider_id,
        "gateway": "Vietcombank",
        "transactionDate": "2026-10-18 19:30:00",
        "accountNumber": "0071000123456",
        "code": None,
        "content": content,
        "transferType": transfer_type,
        "transferAmount": amount,
        "accumulated": 1000000,
        "subAccount": None,
        "referenceCode": f"FT{provider_id}",
        "description": content,
    }
    payload.update(extra)
    return payload


@pytest.fixture
def banking_payment(client, menu, waiter_headers, cashier_headers, open_session) -> dict:
    """A pending BANKING payment for table #5's 24.75 bill."""
    order = client.post("/api/v1/customer/orders", headers=open_session["guest_headers"], json={
        "items": [{"menu_item_id": menu["pho"].id, "quantity": 2}, {"menu_item_id": menu["tea"].id}],
    }).json()
    client.patch(f"/api/v1/orders/{order['id']}/status", headers=waiter_headers, json={"status": "SERVED"})
    res = client.post("/api/v1/payments/", headers=cashier_headers, json={
        "session_id": open_session["session_id"],
        "subtotal": "22.50", "tax": "2.25", "total_amount": "24.75", "method": "BANKING",
    })
    assert res.status_code == 201, res.text
    return res.json()


class TestSepayWebhook:
    def test_matching_transfer_settles_payment(self, client, db_session, cashier_headers, test_table,
                                               banking_payment):
        tx = banking_payment["transaction_id"]
        res = client.post("/webhooks/sepay", json=sepay_payload(5001, f"Thanh toan {tx} ban 5"))
        assert res.status_code == 200
        assert res.json() == {"success": True, "message": "Payment processed", "payment_id": banking_payment["id"]}

        payment = client.get(f"/api/v1/payments/{banking_payment['id']}", headers=cashier_headers).json()
        assert payment["status"] == "PAID"
        assert payment["processed_by_id"] is not None  # the cashier who created it

        db_session.expire_all()
        assert test_table.status == TableStatus.AVAILABLE
        transfer = db_session.query(BankTransfer).filter(BankTransfer.provider_id == 5001).one()
        assert transfer.outcome == TransferOutcome.MATCHED
        assert transfer.payment_id == banking_payment["id"]

    def test_code_field_preferred(self, client, banking_payment):
        tx = banking_payment["transaction_id"]
        res = client.post("/webhooks/sepay", json=sepay_payload(5002, "CK tien an", code=tx))
        assert res.status_code == 200
        assert res.json()["payment_id"] == banking_payment["id"]

    def test_replay_is_acknowledged(self, client, banking_payment):
        payload = sepay_payload(5003, f"Thanh toan {banking_payment['transaction_id']}")
        assert client.post("/webhooks/sepay", json=payload).status_code == 200
        res = client.post("/webhooks/sepay", json=payload)
        assert res.status_code == 200
        assert res.json()["message"] == "Transfer already processed"

    def test_outgoing_transfer_ignored(self, client, db_session, banking_payment):
        payload = sepay_payload(5004, f"Hoan tien {banking_payment['transaction_id']}", transfer_type="out")
        res = client.post("/webhooks/sepay", json=payload)
        assert res.status_code == 200
        assert res.json()["message"] == "Outgoing transfer ignored"
        transfer = db_session.query(BankTransfer).filter(BankTransfer.provider_id == 5004).one()
        assert transfer.outcome == TransferOutcome.IGNORED

    def test_missing_transaction_id(self, client, db_session, banking_payment):
        res = client.post("/webhooks/sepay", json=sepay_payload(5005, "chuyen khoan"))
        assert res.status_code == 400
        assert res.json()["code"] == "webhook_rejected"
        # Rejected deliveries are still recorded
        transfer = db_session.query(BankTransfer).filter(BankTransfer.provider_id == 5005).one()
        assert transfer.outcome == TransferOutcome.REJECTED

    def test_unknown_transaction_id(self, client, banking_payment):
        res = client.post("/webhooks/sepay", json=sepay_payload(5006, "Thanh toan TXZZZZZZZZZZ"))
        assert res.status_code == 404

    def test_amount_mismatch(self, client, cashier_headers, banking_payment):
        payload = sepay_payload(5007, f"Thanh toan {banking_payment['transaction_id']}", amount=20000)
        res = client.post("/webhooks/sepay", json=payload)
        assert res.status_code == 400
        assert "Amount mismatch" in res.json()["detail"]
        payment = client.get(f"/api/v1/payments/{banking_payment['id']}", headers=cashier_headers).json()
        assert payment["status"] == "PENDING"

    def test_lowercase_id_does_not_match(self, client, cashier_headers, banking_payment):
        tx = banking_payment["transaction_id"].lower()
        res = client.post("/webhooks/sepay", json=sepay_payload(5011, f"thanh toan {tx}"))
        assert res.status_code == 400
        payment = client.get(f"/api/v1/payments/{banking_payment['id']}", headers=cashier_headers).json()
        assert payment["status"] == "PENDING"

    def test_replayed_rejection_keeps_its_outcome(self, client, db_session, banking_payment):
        payload = sepay_payload(5012, f"Thanh toan {banking_payment['transaction_id']}", amount=20000)
        first = client.post("/webhooks/sepay", json=payload)
        assert first.status_code == 400

        res = client.post("/webhooks/sepay", json=payload)
        assert res.status_code == 400
        assert res.json()["detail"] == first.json()["detail"]
        assert db_session.query(BankTransfer).filter(BankTransfer.provider_id == 5012).count() == 1

    def test_replayed_unknown_id_stays_not_found(self, client, banking_payment):
        payload = sepay_payload(5013, "Thanh toan TXZZZZZZZZZZ")
        assert client.post("/webhooks/sepay", json=payload).status_code == 404
        assert client.post("/webhooks/sepay", json=payload).status_code == 404

    def test_already_paid(self, client, banking_payment):
        tx = banking_payment["transaction_id"]
        client.post("/webhooks/sepay", json=sepay_payload(5008, f"Thanh toan {tx}"))
        res = client.post("/webhooks/sepay", json=sepay_payload(5009, f"Thanh toan {tx}"))
        assert res.status_code == 409

    def test_cash_payment_not_settled_by_bank(self, client, menu, waiter_headers, cashier_headers, open_session):
        order = client.post("/api/v1/customer/orders", headers=open_session["guest_headers"],
                            json={"items": [{"menu_item_id": menu["tea"].id}]}).json()
        client.patch(f"/api/v1/orders/{order['id']}/status", headers=waiter_headers, json={"status": "SERVED"})
        cash = client.post("/api/v1/payments/", headers=cashier_headers, json={
            "session_id": open_session["session_id"],
            "subtotal": "2.50", "tax": "0.25", "total_amount": "2.75", "method": "CASH",
        }).json()
        res = client.post("/webhooks/sepay", json=sepay_payload(5010, f"TT {cash['transaction_id']}", amount=2750))
        assert res.status_code == 409

    def test_malformed_payload(self, client):
        assert client.post("/webhooks/sepay", json={"id": 1}).status_code == 422


class TestWebhookApiKey:
    @pytest.fixture(autouse=True)
    def api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "sepay_webhook_api_key", "sepay-secret")

    def test_missing_key_rejected(self, client, banking_payment):
        payload = sepay_payload(6001, f"Thanh toan {banking_payment['transaction_id']}")
        assert client.post("/webhooks/sepay", json=payload).status_code == 401

    def test_wrong_key_rejected(self, client, banking_payment):
        payload = sepay_payload(6002, f"Thanh toan {banking_payment['transaction_id']}")
        res = client.post("/webhooks/sepay", json=payload, headers={"Authorization": "Apikey nope"})
        assert res.status_code == 401

    def test_valid_key_accepted(self, client, banking_payment):
        payload = sepay_payload(6003, f"Thanh toan {banking_payment['transaction_id']}")
        res = client.post("/webhooks/sepay", json=payload, headers={"Authorization": "Apikey sepay-secret"})
        assert res.status_code == 200
