import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class MarketplaceClient:
    """Thin wrapper over the ArtisanMarket HTTP API.

    ``session`` defaults to a ``requests.Session``; anything with the same
    ``request(method, url, json=, params=, headers=)`` signature works.
    """

    def __init__(self, base_url: str = "http://localhost:8000", token: Optional[str] = None, session=None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, json=None, params=None, headers=None) -> dict:
        all_headers = dict(headers or {})
        if self.token:
            all_headers["Authorization"] = f"Bearer {self.token}"
        kwargs = {"json": json, "params": params, "headers": all_headers}
        if isinstance(self.session, requests.Session):
            kwargs["timeout"] = self.timeout
        resp = self.session.request(method, f"{self.base_url}{path}", **kwargs)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 400 or data.get("success") is False:
            message = data.get("message") or f"Request failed with status {resp.status_code}"
            logger.debug("%s %s failed: %s %s", method, path, resp.status_code, message)
            raise MarketplaceError(resp.status_code, message)
        return data

    # ----------------------- Auth -----------------------
    def login(self, email: str, password: str) -> dict:
        data = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        self.token = data["token"]
        return data

    def register(self, name: str, email: str, password: str, role: str = "customer") -> dict:
        data = self._request("POST", "/api/auth/register", json={"name": name, "email": email, "password": password, "role": role})
        self.token = data["token"]
        return data

    # ----------------------- Catalog -----------------------
    def list_products(self, **filters) -> dict:
        return self._request("GET", "/api/products", params={k: v for k, v in filters.items() if v is not None})

    def get_product(self, product_id: str) -> dict:
        return self._request("GET", f"/api/products/{product_id}")["product"]

    def featured_products(self) -> list:
        return self._request("GET", "/api/products/featured")["products"]

    def categories(self) -> list:
        return self._request("GET", "/api/products/categories")["categories"]

    def create_product(self, product: dict) -> dict:
        return self._request("POST", "/api/products", json=product)["product"]

    def update_product(self, product_id: str, changes: dict) -> dict:
        return self._request("PUT", f"/api/products/{product_id}", json=changes)["product"]

    def delete_product(self, product_id: str) -> None:
        self._request("DELETE", f"/api/products/{product_id}")

    # ----------------------- Bank -----------------------
    def get_bank_account(self) -> Optional[dict]:
        try:
            return self._request("GET", "/api/bank/account")["account"]
        except MarketplaceError as e:
            if e.status == 404:
                return None
            raise

    def connect_bank_account(self, form: dict) -> dict:
        return self._request("POST", "/api/bank/connect", json=form)["account"]

    # ----------------------- Orders -----------------------
    def place_order(self, payload: dict, idempotency_key: Optional[str] = None) -> dict:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return self._request("POST", "/api/orders", json=payload, headers=headers)["order"]

    def list_orders(self, **params) -> list:
        return self._request("GET", "/api/orders", params=params)["orders"]

    def cancel_order(self, order_id: str) -> dict:
        return self._request("PATCH", f"/api/orders/{order_id}/cancel")["order"]

    # ----------------------- Vendor -----------------------
    def imagekit_auth(self) -> dict:
        return self._request("POST", "/api/upload/imagekit-auth")

    def submit_delivery_proof(self, order_id: str, proof: dict) -> dict:
        return self._request("POST", f"/api/vendors/orders/{order_id}/delivery-proof", json=proof)

    def vendor_profile(self) -> dict:
        return self._request("GET", "/api/vendors/profile")["vendor"]

    def update_vendor_profile(self, changes: dict) -> dict:
        return self._request("PUT", "/api/vendors/profile", json=changes)["vendor"]

    def vendor_stats(self) -> dict:
        return self._request("GET", "/api/vendors/stats")["stats"]

    def vendor_orders(self, status: Optional[str] = None) -> list:
        return self._request("GET", "/api/vendors/orders", params={"status": status} if status else None)["orders"]
