from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from fastapi import HTTPException

import order_workflow
from conftest import order_payload
from order_workflow import record_delivery_proof

PROOF = {"image_url": "https://ik.imagekit.io/demo/proof-1.jpg", "file_id": "file_1", "location": "Portland hub"}


@pytest.fixture
def placed_order(client, customer, vendor, make_product, make_bank_account):
    product_id = make_product(vendor, title="Walnut Board", price=20.0, quantity=5)
    account_id = make_bank_account(customer)
    resp = client.post(
        "/api/orders",
        headers=customer.headers,
        json=order_payload([(product_id, 2)], account_id, 51.2),
    )
    assert resp.status_code == 201
    return resp.json()["order"]["id"]


def test_create_and_update_profile(client, make_user):
    user = make_user("vendor")
    resp = client.post("/api/vendors/profile", headers=user.headers, json={
        "store_name": "Indigo Loom",
        "store_description": "Natural dye textiles",
        "contact": {"email": "loom@example.com"},
        "specialties": ["shibori"],
    })
    assert resp.status_code == 201
    vendor = resp.json()["vendor"]
    assert vendor["verification"]["status"] == "pending"
    assert vendor["financials"]["commission_rate"] == 0.1

    again = client.post("/api/vendors/profile", headers=user.headers, json={
        "store_name": "Twice", "contact": {"email": "loom@example.com"},
    })
    assert again.status_code == 400

    resp = client.put("/api/vendors/profile", headers=user.headers, json={"slogan": "Dyed by hand"})
    assert resp.json()["vendor"]["slogan"] == "Dyed by hand"
    assert client.get("/api/vendors/profile", headers=user.headers).json()["vendor"]["store_name"] == "Indigo Loom"


def test_customer_cannot_create_store(client, customer):
    resp = client.post("/api/vendors/profile", headers=customer.headers, json={
        "store_name": "Nope", "contact": {"email": "x@example.com"},
    })
    assert resp.status_code == 403


def test_public_store_hides_financials(client, vendor, make_product):
    make_product(vendor, title="Mug")
    make_product(vendor, title="Hidden", status="inactive")
    resp = client.get(f"/api/vendors/public/{vendor.vendor_id}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["store"]["store_name"] == "Clay & Grain"
    assert "financials" not in body["store"]
    assert [p["title"] for p in body["products"]] == ["Mug"]


def test_stats(client, vendor, placed_order):
    stats = client.get("/api/vendors/stats", headers=vendor.headers).json()["stats"]
    assert stats["total_orders"] == 1
    assert stats["total_sales"] == 2
    assert stats["total_revenue"] == 40.0
    assert stats["net_revenue"] == 36.0
    assert stats["total_products"] == 1
    assert sum(stats["monthly_revenue"]) == 40.0
    assert stats["top_products"][0]["title"] == "Walnut Board"


def test_vendor_orders_show_only_own_items(client, mongo, customer, vendor, make_vendor, make_product, make_bank_account):
    other = make_vendor("Other Studio")
    mine = make_product(vendor, price=20.0)
    theirs = make_product(other, price=10.0)
    account_id = make_bank_account(customer)
    client.post("/api/orders", headers=customer.headers, json=order_payload([(mine, 1), (theirs, 1)], account_id, 40.4))

    orders = client.get("/api/vendors/orders", headers=vendor.headers).json()["orders"]
    assert len(orders) == 1
    assert [i["product_id"] for i in orders[0]["items"]] == [mine]
    assert orders[0]["vendor_subtotal"] == 20.0


# ----------------------- Delivery proof -----------------------
def test_proof_requires_order_in_fulfillment(client, vendor, placed_order):
    resp = client.post(f"/api/vendors/orders/{placed_order}/delivery-proof", headers=vendor.headers, json=PROOF)
    assert resp.status_code == 400


def test_proof_upload_and_reupload_within_window(client, mongo, customer, vendor, placed_order):
    client.patch(f"/api/orders/{placed_order}/status", headers=vendor.headers, json={"status": "processing"})
    url = f"/api/vendors/orders/{placed_order}/delivery-proof"

    first = client.post(url, headers=vendor.headers, json=PROOF)
    assert first.status_code == 200
    assert 0 < first.json()["reupload_seconds_left"] <= 15 * 60

    second = client.post(url, headers=vendor.headers, json={**PROOF, "image_url": "https://ik.imagekit.io/demo/proof-2.jpg"})
    assert second.status_code == 200
    proof = second.json()["delivery_proof"]
    assert proof["image_url"].endswith("proof-2.jpg")
    assert proof["upload_count"] == 2
    assert proof["uploaded_at"] == first.json()["delivery_proof"]["uploaded_at"]

    resp = client.get(f"/api/delivery-proof/order/{placed_order}", headers=customer.headers)
    assert resp.status_code == 200
    assert resp.json()["delivery_proof"]["location"] == "Portland hub"


def test_reupload_after_window_is_rejected(client, mongo, vendor, placed_order):
    client.patch(f"/api/orders/{placed_order}/status", headers=vendor.headers, json={"status": "processing"})
    mongo["deliveryproof"].insert_one({
        "order_id": placed_order,
        "vendor_id": vendor.vendor_id,
        "image_url": "https://ik.imagekit.io/demo/old.jpg",
        "uploaded_at": datetime.now(timezone.utc) - timedelta(minutes=16),
        "upload_count": 1,
    })
    resp = client.post(f"/api/vendors/orders/{placed_order}/delivery-proof", headers=vendor.headers, json=PROOF)
    assert resp.status_code == 400
    assert "15 minutes" in resp.json()["message"]
    stored = mongo["deliveryproof"].find_one({"order_id": placed_order})
    assert stored["image_url"].endswith("old.jpg")


def test_window_is_measured_from_first_upload(mongo, vendor):
    order = {"_id": ObjectId(), "order_number": "ORD-250601-0001", "status": "shipped"}
    start = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    record_delivery_proof(mongo, order, vendor.vendor_id, PROOF, now=start)
    record_delivery_proof(mongo, order, vendor.vendor_id, PROOF, now=start + timedelta(minutes=10))
    with pytest.raises(HTTPException) as exc:
        record_delivery_proof(mongo, order, vendor.vendor_id, PROOF, now=start + timedelta(minutes=16))
    assert exc.value.status_code == 400


def test_unrelated_vendor_cannot_upload_proof(client, make_vendor, vendor, placed_order):
    client.patch(f"/api/orders/{placed_order}/status", headers=vendor.headers, json={"status": "processing"})
    other = make_vendor("Other Studio")
    resp = client.post(f"/api/vendors/orders/{placed_order}/delivery-proof", headers=other.headers, json=PROOF)
    assert resp.status_code == 403


def test_missing_proof_is_404(client, customer, placed_order):
    resp = client.get(f"/api/delivery-proof/order/{placed_order}", headers=customer.headers)
    assert resp.status_code == 404


def test_simultaneous_first_uploads_keep_one_proof(mongo, vendor, monkeypatch):
    order = {"_id": ObjectId(), "order_number": "ORD-250601-0002", "status": "shipped"}
    start = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    real_create = order_workflow.create_document

    def rival_lands_first(collection, doc, db=None):
        real_create(collection, {
            "order_id": str(order["_id"]),
            "vendor_id": vendor.vendor_id,
            "image_url": "https://ik.imagekit.io/demo/rival.jpg",
            "uploaded_at": start,
            "upload_count": 1,
        }, db=db)
        return real_create(collection, doc, db=db)

    monkeypatch.setattr(order_workflow, "create_document", rival_lands_first)
    proof = record_delivery_proof(mongo, order, vendor.vendor_id, PROOF, now=start + timedelta(minutes=1))
    assert proof["image_url"] == PROOF["image_url"]
    assert proof["upload_count"] == 2
    assert mongo["deliveryproof"].count_documents({}) == 1
