import main
from conftest import order_payload


def test_dashboard(client, admin, customer, vendor, make_product, make_bank_account):
    product_id = make_product(vendor, price=20.0)
    account_id = make_bank_account(customer)
    client.post("/api/orders", headers=customer.headers, json=order_payload([(product_id, 2)], account_id, 51.2))

    stats = client.get("/api/admin/dashboard", headers=admin.headers).json()["stats"]
    assert stats["orders"] == 1
    assert stats["orders_by_status"]["pending"] == 1
    assert stats["revenue"] == 51.2
    assert stats["products"] == 1
    assert stats["vendors"] == 1


def test_dashboard_is_admin_only(client, customer):
    assert client.get("/api/admin/dashboard", headers=customer.headers).status_code == 403


def test_vendor_verification(client, admin, vendor):
    resp = client.patch(
        f"/api/admin/vendors/{vendor.vendor_id}/verification",
        headers=admin.headers,
        json={"status": "verified"},
    )
    assert resp.status_code == 200
    assert resp.json()["vendor"]["verification"]["status"] == "verified"
    assert resp.json()["vendor"]["verification"]["verified_at"] is not None

    pending = client.get("/api/admin/vendors", headers=admin.headers, params={"status": "pending"}).json()["vendors"]
    assert pending == []
    listed = client.get("/api/admin/vendors", headers=admin.headers).json()["vendors"]
    assert [v["id"] for v in listed] == [vendor.vendor_id]


# ----------------------- Seed -----------------------
def test_seed_is_hidden_unless_enabled(client, monkeypatch):
    monkeypatch.setattr(main, "ALLOW_SEED", False)
    assert client.post("/seed").status_code == 404


def test_seed_populates_catalog_once(client, monkeypatch):
    monkeypatch.setattr(main, "ALLOW_SEED", True)
    resp = client.post("/seed")
    assert resp.json() == {"seeded": True, "products": len(main.DEMO_PRODUCTS)}
    assert client.post("/seed").json()["seeded"] is False

    products = client.get("/api/products", params={"category": "ceramics"}).json()["products"]
    assert [p["title"] for p in products] == ["Hand-thrown Stoneware Mug"]
    assert products[0]["vendor"]["store_name"] == "Clay & Grain Studio"
