"""Integration tests for the order, payment and wallet endpoints."""

CUSTOMER = {"X-User-Id": "cust-001", "X-User-Role": "Customer"}
VENDOR = {"X-User-Id": "vendor-owner", "X-User-Role": "Vendor"}
ADMIN = {"X-User-Id": "admin-001", "X-User-Role": "Admin"}


def _pay(client, order):
    return client.post(f"/payments/{order['payment_id']}/process", headers=CUSTOMER)


class TestOrderEndpoints:
    def test_get_order(self, client, placed_order):
        response = client.get(f"/orders/{placed_order['order_id']}")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "Pending"
        assert body["total"] == 22.5

    def test_unknown_order(self, client):
        assert client.get("/orders/missing").status_code == 404

    def test_customer_cannot_confirm(self, client, placed_order):
        response = client.put(
            f"/orders/{placed_order['order_id']}/status",
            json={"status": "Confirmed"},
            headers=CUSTOMER,
        )
        assert response.status_code == 403
        assert response.json()["code"] == "NotAuthorized"

    def test_unpaid_card_order_cannot_be_confirmed(self, client, placed_order):
        response = client.put(
            f"/orders/{placed_order['order_id']}/status",
            json={"status": "Confirmed"},
            headers=VENDOR,
        )
        assert response.status_code == 409
        assert response.json()["code"] == "InvalidTransition"

    def test_vendor_prepares_a_paid_order(self, client, placed_order):
        _pay(client, placed_order)
        response = client.put(
            f"/orders/{placed_order['order_id']}/status",
            json={"status": "Processing", "note": "Packing now"},
            headers=VENDOR,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "Processing"

    def test_stale_expected_status(self, client, placed_order):
        _pay(client, placed_order)
        response = client.put(
            f"/orders/{placed_order['order_id']}/status",
            json={"status": "Processing", "expected_status": "Pending"},
            headers=VENDOR,
        )
        assert response.status_code == 409
        assert response.json()["code"] == "ConcurrencyConflict"

    def test_customer_cancels(self, client, placed_order):
        response = client.post(
            f"/orders/{placed_order['order_id']}/cancel",
            json={"reason": "Changed my mind"},
            headers=CUSTOMER,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "Cancelled"

        payment = client.get(f"/payments/{placed_order['payment_id']}").json()
        assert payment["status"] == "Voided"

    def test_customer_order_history(self, client, placed_order):
        response = client.get("/orders", params={"customer_id": "cust-001"})
        assert response.status_code == 200
        orders = response.json()["orders"]
        assert [o["order_id"] for o in orders] == [placed_order["order_id"]]
        assert orders[0]["status"] == "Pending"

    def test_vendor_order_queue(self, client, placed_order, storefront):
        _pay(client, placed_order)
        response = client.get("/orders", params={"vendor_id": storefront["vendor_id"], "status": "Confirmed"})
        assert response.status_code == 200
        assert [o["order_id"] for o in response.json()["orders"]] == [placed_order["order_id"]]

    def test_listing_needs_one_filter(self, client):
        assert client.get("/orders").status_code == 400

    def test_order_payments(self, client, placed_order):
        response = client.get(f"/orders/{placed_order['order_id']}/payments")
        assert response.status_code == 200
        assert [p["id"] for p in response.json()["payments"]] == [placed_order["payment_id"]]

    def test_cancelled_order_is_not_charged(self, client, placed_order):
        client.post(f"/orders/{placed_order['order_id']}/cancel", json={"reason": "Too slow"}, headers=CUSTOMER)
        response = _pay(client, placed_order)
        assert response.status_code == 409
        assert response.json()["code"] == "InvalidTransition"


class TestPaymentEndpoints:
    def test_process_payment(self, client, placed_order):
        response = _pay(client, placed_order)
        assert response.status_code == 200
        assert response.json() == {"payment_id": placed_order["payment_id"], "status": "Completed"}

        order = client.get(f"/orders/{placed_order['order_id']}").json()
        assert order["status"] == "Confirmed"
        assert order["payment_status"] == "Paid"

    def test_someone_else_cannot_pay(self, client, placed_order):
        response = client.post(
            f"/payments/{placed_order['payment_id']}/process",
            headers={"X-User-Id": "cust-999", "X-User-Role": "Customer"},
        )
        assert response.status_code == 403

    def test_partial_refund(self, client, placed_order):
        _pay(client, placed_order)
        response = client.post(
            f"/payments/{placed_order['payment_id']}/refunds",
            json={"amount": 5.0, "reason": "Bruised leaves"},
            headers=ADMIN,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["refund_status"] == "Processed"
        assert body["payment_status"] == "Partially_Refunded"
        assert body["refundable_amount"] == 17.5

    def test_refund_above_refundable(self, client, placed_order):
        _pay(client, placed_order)
        response = client.post(
            f"/payments/{placed_order['payment_id']}/refunds",
            json={"amount": 30.0, "reason": "Bruised leaves"},
            headers=ADMIN,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidRefundAmount"

    def test_customer_cannot_refund(self, client, placed_order):
        _pay(client, placed_order)
        response = client.post(
            f"/payments/{placed_order['payment_id']}/refunds",
            json={"amount": 5.0, "reason": "Please"},
            headers=CUSTOMER,
        )
        assert response.status_code == 403


class TestWalletEndpoints:
    def _open(self, client, user_id):
        response = client.post("/wallets", json={"user_id": user_id})
        assert response.status_code == 201
        return response.json()["id"]

    def test_open_and_credit(self, client):
        wallet_id = self._open(client, "cust-001")
        response = client.post(
            f"/wallets/{wallet_id}/transactions",
            json={"transaction_type": "Credit", "amount": 25.0, "description": "Goodwill"},
            headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.json()["wallet"]["balance"] == 25.0

    def test_overdraw_is_payment_required(self, client):
        wallet_id = self._open(client, "cust-001")
        response = client.post(
            f"/wallets/{wallet_id}/transactions",
            json={"transaction_type": "Debit", "amount": 1.0},
            headers=CUSTOMER,
        )
        assert response.status_code == 402
        assert response.json()["code"] == "InsufficientFunds"

    def test_transfer(self, client):
        source = self._open(client, "cust-001")
        target = self._open(client, "cust-002")
        client.post(
            f"/wallets/{source}/transactions",
            json={"transaction_type": "Credit", "amount": 40.0},
            headers=ADMIN,
        )

        response = client.post(
            f"/wallets/{source}/transfers",
            json={"target_wallet_id": target, "amount": 15.0},
            headers=CUSTOMER,
        )
        assert response.status_code == 200
        assert response.json()["wallet"]["balance"] == 25.0
        assert client.get(f"/wallets/{target}").json()["balance"] == 15.0

    def test_non_positive_transfer_is_rejected(self, client):
        source = self._open(client, "cust-001")
        target = self._open(client, "cust-002")
        response = client.post(
            f"/wallets/{source}/transfers",
            json={"target_wallet_id": target, "amount": 0},
            headers=CUSTOMER,
        )
        assert response.status_code == 422
