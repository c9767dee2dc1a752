import hashlib
import hmac

import uploads
from config import BANK_SANDBOX_BALANCE
from conftest import order_payload
from uploads import imagekit_auth_params

BANK_FORM = {
    "account_holder": "Ada Potter",
    "bank_name": "Kiln Credit Union",
    "account_number": "000123456789",
    "routing_number": "021000021",
}


# ----------------------- Bank accounts -----------------------
def test_connect_keeps_only_last_four_digits(client, mongo, customer):
    resp = client.post("/api/bank/connect", headers=customer.headers, json=BANK_FORM)
    assert resp.status_code == 201
    account = resp.json()["account"]
    assert account["account_last4"] == "6789"
    assert account["routing_last4"] == "0021"
    assert account["account_number_masked"] == "****6789"
    assert account["balance"] == BANK_SANDBOX_BALANCE

    stored = mongo["bankaccount"].find_one({"user_id": customer.id})
    assert "000123456789" not in str(stored)
    assert "021000021" not in str(stored)


def test_connect_rejects_malformed_numbers(client, customer):
    resp = client.post("/api/bank/connect", headers=customer.headers, json={**BANK_FORM, "routing_number": "1234"})
    assert resp.status_code == 400
    assert "Routing number" in resp.json()["message"]

    resp = client.post("/api/bank/connect", headers=customer.headers, json={**BANK_FORM, "account_number": "12ab"})
    assert resp.status_code == 400


def test_only_one_account_per_user(client, customer):
    client.post("/api/bank/connect", headers=customer.headers, json=BANK_FORM)
    resp = client.post("/api/bank/connect", headers=customer.headers, json=BANK_FORM)
    assert resp.status_code == 400
    assert resp.json()["message"] == "A bank account is already linked"


def test_get_update_and_unlink(client, customer):
    assert client.get("/api/bank/account", headers=customer.headers).status_code == 404
    client.post("/api/bank/connect", headers=customer.headers, json=BANK_FORM)

    resp = client.put("/api/bank/account", headers=customer.headers, json={"account_type": "savings"})
    assert resp.json()["account"]["account_type"] == "savings"
    assert client.get("/api/bank/account", headers=customer.headers).json()["account"]["bank_name"] == "Kiln Credit Union"

    assert client.delete("/api/bank/account", headers=customer.headers).status_code == 200
    resp = client.get("/api/bank/account", headers=customer.headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "No bank account linked"


def test_cannot_unlink_while_a_paid_order_is_open(client, mongo, customer, vendor, make_product):
    client.post("/api/bank/connect", headers=customer.headers, json=BANK_FORM)
    account_id = client.get("/api/bank/account", headers=customer.headers).json()["account"]["id"]
    product_id = make_product(vendor, price=20.0)
    order_id = client.post(
        "/api/orders", headers=customer.headers, json=order_payload([(product_id, 2)], account_id, 51.2),
    ).json()["order"]["id"]

    resp = client.delete("/api/bank/account", headers=customer.headers)
    assert resp.status_code == 400
    assert mongo["bankaccount"].count_documents({"user_id": customer.id}) == 1

    client.patch(f"/api/orders/{order_id}/cancel", headers=customer.headers)
    assert client.get("/api/bank/account", headers=customer.headers).json()["account"]["balance"] == BANK_SANDBOX_BALANCE
    assert client.delete("/api/bank/account", headers=customer.headers).status_code == 200


def test_bank_routes_require_login(client):
    assert client.get("/api/bank/account").status_code == 401


def test_payment_intent_is_a_placeholder(client, customer):
    resp = client.post("/api/payments/create-payment-intent", headers=customer.headers, json={"amount": 12.5})
    assert resp.status_code == 200
    assert "coming soon" in resp.json()["message"]


# ----------------------- Uploads -----------------------
def test_imagekit_signature():
    params = imagekit_auth_params("private_test", token="tok-1", expire=1700000000)
    expected = hmac.new(b"private_test", b"tok-11700000000", hashlib.sha1).hexdigest()
    assert params == {"token": "tok-1", "expire": 1700000000, "signature": expected}


def test_imagekit_auth_route(client, monkeypatch, vendor):
    monkeypatch.setattr(uploads, "IMAGEKIT_PRIVATE_KEY", "private_test")
    monkeypatch.setattr(uploads, "IMAGEKIT_PUBLIC_KEY", "public_test")
    resp = client.post("/api/upload/imagekit-auth", headers=vendor.headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["publicKey"] == "public_test"
    assert len(body["signature"]) == 40
    assert body["expire"] > 0


def test_imagekit_auth_unconfigured(client, monkeypatch, vendor):
    monkeypatch.setattr(uploads, "IMAGEKIT_PRIVATE_KEY", "")
    resp = client.post("/api/upload/imagekit-auth", headers=vendor.headers)
    assert resp.status_code == 500
    assert resp.json()["success"] is False
