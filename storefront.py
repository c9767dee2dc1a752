"""
Client-side state: cart, wishlist, auth token, catalog browsing, the vendor
dashboard and the checkout wizard.

State is mirrored into a JSON file the way the browser build mirrors it into
localStorage. Nothing here is authoritative; prices and stock are checked
again by the server when the order is placed.
"""
import json
import logging
import os
import re
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from api_client import MarketplaceClient, MarketplaceError
from pricing import OrderTotals, compute_totals

logger = logging.getLogger(__name__)

SHIPPING_FIELDS = ("first_name", "last_name", "email", "phone", "address", "city", "state", "zip_code", "country")
BANK_FORM_FIELDS = ("account_holder", "bank_name", "account_number", "routing_number", "account_type")


class LocalStorage:
    def __init__(self, path: str):
        self.path = path

    def _load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Storage file %s is unreadable, starting fresh: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict) -> None:
        with open(self.path, "w") as f:
            json.dump(data, f)

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)

    def read_json(self, key: str, default):
        raw = self.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.error("Error parsing %s data from storage, clearing it", key)
            self.remove_item(key)
            return default

    def write_json(self, key: str, value) -> None:
        self.set_item(key, json.dumps(value))


# ----------------------- Cart -----------------------
class CartStore:
    KEY = "cart"

    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self.items: List[dict] = storage.read_json(self.KEY, [])
        self.is_open = False
        self.total_items = 0
        self.total_price = 0.0
        self._recalculate()

    def _recalculate(self) -> None:
        self.total_items = sum(i["quantity"] for i in self.items)
        self.total_price = compute_totals(((i["price"], i["quantity"]) for i in self.items), "free").subtotal

    def _commit(self) -> None:
        self._recalculate()
        self.storage.write_json(self.KEY, self.items)

    def find(self, product_id: str) -> Optional[dict]:
        return next((i for i in self.items if i["id"] == product_id), None)

    def add(self, product: dict, quantity: int = 1) -> None:
        existing = self.find(product["id"])
        if existing:
            existing["quantity"] += quantity
        else:
            self.items.append({**product, "quantity": quantity})
        self._commit()

    def remove(self, product_id: str) -> None:
        self.items = [i for i in self.items if i["id"] != product_id]
        self._commit()

    def update_quantity(self, product_id: str, quantity: int) -> None:
        item = self.find(product_id)
        if item is None:
            return
        if quantity < 1:
            self.remove(product_id)
            return
        item["quantity"] = quantity
        self._commit()

    def clear(self) -> None:
        self.items = []
        self._recalculate()
        self.storage.remove_item(self.KEY)

    def toggle(self) -> None:
        self.is_open = not self.is_open

    def close(self) -> None:
        self.is_open = False


class WishlistStore:
    KEY = "wishlist"

    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self.items: List[dict] = storage.read_json(self.KEY, [])
        self.is_open = False

    def contains(self, product_id: str) -> bool:
        return any(i["id"] == product_id for i in self.items)

    def add(self, product: dict) -> None:
        if self.contains(product["id"]):
            return
        self.items.append({**product, "added_at": datetime.now(timezone.utc).isoformat()})
        self.storage.write_json(self.KEY, self.items)

    def remove(self, product_id: str) -> None:
        self.items = [i for i in self.items if i["id"] != product_id]
        self.storage.write_json(self.KEY, self.items)

    def clear(self) -> None:
        self.items = []
        self.storage.remove_item(self.KEY)

    def move_to_cart(self, product_id: str, cart: CartStore) -> None:
        item = next((i for i in self.items if i["id"] == product_id), None)
        if item is None:
            return
        product = {k: v for k, v in item.items() if k != "added_at"}
        cart.add(product)
        self.remove(product_id)

    def toggle(self) -> None:
        self.is_open = not self.is_open


class AuthSession:
    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self.token: Optional[str] = storage.get_item("token")
        self.user: Optional[dict] = storage.read_json("user", None)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def login(self, client: MarketplaceClient, email: str, password: str) -> dict:
        data = client.login(email, password)
        self.token, self.user = data["token"], data["user"]
        self.storage.set_item("token", self.token)
        self.storage.write_json("user", self.user)
        return self.user

    def logout(self) -> None:
        self.token, self.user = None, None
        self.storage.remove_item("token")
        self.storage.remove_item("user")


# ----------------------- Catalog and vendor dashboard -----------------------
FILTER_PARAMS = {"min_price": "minPrice", "max_price": "maxPrice", "sort_by": "sortBy", "sort_order": "sortOrder"}


class ProductStore:
    """Catalog browsing state: the current page, featured shelf, categories and filters."""

    PAGE_SIZE = 12

    def __init__(self, client: MarketplaceClient):
        self.client = client
        self.products: List[dict] = []
        self.featured: List[dict] = []
        self.current: Optional[dict] = None
        self.categories: List[dict] = []
        self.filters: dict = {}
        self.pagination = {"current_page": 1, "total_pages": 1, "total_products": 0, "limit": self.PAGE_SIZE}
        self.error: Optional[str] = None

    def _call(self, fn, *args, **kwargs):
        self.error = None
        try:
            return fn(*args, **kwargs)
        except MarketplaceError as e:
            logger.warning("Catalog request failed: %s", e.message)
            self.error = e.message
            return None

    def update_filters(self, **filters) -> None:
        self.filters.update({k: v for k, v in filters.items() if v is not None})
        self.pagination["current_page"] = 1

    def clear_filters(self) -> None:
        self.filters = {}
        self.pagination["current_page"] = 1

    def query_params(self) -> dict:
        params = {FILTER_PARAMS.get(k, k): v for k, v in self.filters.items()}
        params["page"] = self.pagination["current_page"]
        params["limit"] = self.pagination["limit"]
        return params

    def fetch(self, page: Optional[int] = None) -> List[dict]:
        if page is not None:
            self.pagination["current_page"] = page
        data = self._call(self.client.list_products, **self.query_params())
        if data is not None:
            self.products = data["products"]
            self.pagination["total_pages"] = data["pagination"]["total_pages"]
            self.pagination["total_products"] = data["pagination"]["total_products"]
        return self.products

    def fetch_featured(self) -> List[dict]:
        featured = self._call(self.client.featured_products)
        if featured is not None:
            self.featured = featured
        return self.featured

    def fetch_categories(self) -> List[dict]:
        categories = self._call(self.client.categories)
        if categories is not None:
            self.categories = categories
        return self.categories

    def open(self, product_id: str) -> Optional[dict]:
        self.current = self._call(self.client.get_product, product_id)
        return self.current

    def add_product(self, product: dict) -> None:
        self.products.append(product)

    def update_product(self, product: dict) -> None:
        self.products = [product if p["id"] == product["id"] else p for p in self.products]

    def remove_product(self, product_id: str) -> None:
        self.products = [p for p in self.products if p["id"] != product_id]


class VendorStore:
    """The signed-in vendor's dashboard: store profile, products, stats and orders."""

    def __init__(self, client: MarketplaceClient):
        self.client = client
        self.profile: Optional[dict] = None
        self.products: List[dict] = []
        self.stats: Optional[dict] = None
        self.orders: List[dict] = []

    def load(self) -> None:
        self.profile = self.client.vendor_profile()
        self.products = self.client.list_products(vendor=self.profile["id"], limit=100)["products"]
        self.stats = self.client.vendor_stats()
        self.orders = self.client.vendor_orders()

    def update_profile(self, **changes) -> dict:
        self.profile = self.client.update_vendor_profile(changes)
        return self.profile

    def add_product(self, product: dict) -> dict:
        created = self.client.create_product(product)
        self.products.append(created)
        return created

    def update_product(self, product_id: str, **changes) -> dict:
        updated = self.client.update_product(product_id, changes)
        self.products = [updated if p["id"] == product_id else p for p in self.products]
        return updated

    def remove_product(self, product_id: str) -> None:
        self.client.delete_product(product_id)
        self.products = [p for p in self.products if p["id"] != product_id]


# ----------------------- Checkout -----------------------
class CheckoutError(Exception):
    pass


class CheckoutWizard:
    """Shipping -> Payment -> Review.

    ``next()`` validates the current step only. ``place_order()`` holds a submit
    lock and reuses one idempotency key, so a repeated click cannot charge twice.
    """

    STEPS = {1: "Shipping", 2: "Payment", 3: "Review"}

    def __init__(self, cart: CartStore, saved_addresses: Optional[List[dict]] = None, linked_account: Optional[dict] = None):
        self.cart = cart
        self.current_step = 1
        self.saved_addresses = saved_addresses or []
        self.selected_address: Optional[int] = None
        self.new_address = {f: "" for f in SHIPPING_FIELDS}
        self.shipping_method = "standard"
        self.order_notes: Optional[str] = None
        self.linked_account = linked_account
        self.use_linked_account = linked_account is not None
        self.bank_form = {f: "" for f in BANK_FORM_FIELDS}
        self.bank_form["account_type"] = "checking"
        self.is_processing = False
        self.idempotency_key = uuid.uuid4().hex

    # step 1
    def select_address(self, index: Optional[int]) -> None:
        if index is not None and not 0 <= index < len(self.saved_addresses):
            raise CheckoutError("Unknown saved address")
        self.selected_address = index

    def update_address(self, **fields) -> None:
        self.new_address.update({k: v for k, v in fields.items() if k in SHIPPING_FIELDS})
        self.selected_address = None

    def set_shipping_method(self, method: str) -> None:
        if method not in ("free", "standard", "express"):
            raise CheckoutError(f"Unknown shipping method: {method}")
        self.shipping_method = method

    def shipping_address(self) -> dict:
        if self.selected_address is not None:
            return dict(self.saved_addresses[self.selected_address])
        return {k: v.strip() for k, v in self.new_address.items()}

    def validate_shipping(self) -> bool:
        address = self.shipping_address()
        return all(str(address.get(f, "")).strip() for f in SHIPPING_FIELDS)

    # step 2
    def update_bank_form(self, **fields) -> None:
        self.bank_form.update({k: v for k, v in fields.items() if k in BANK_FORM_FIELDS})
        self.use_linked_account = False

    def use_linked(self) -> None:
        if self.linked_account is None:
            raise CheckoutError("No bank account is linked")
        self.use_linked_account = True

    def validate_bank_form(self) -> bool:
        form = self.bank_form
        if not all(str(form.get(f, "")).strip() for f in BANK_FORM_FIELDS):
            return False
        account = re.sub(r"[\s-]", "", form["account_number"])
        routing = re.sub(r"[\s-]", "", form["routing_number"])
        return bool(re.fullmatch(r"\d{4,17}", account) and re.fullmatch(r"\d{9}", routing))

    def validate_payment(self) -> bool:
        if self.use_linked_account:
            return self.linked_account is not None and self.linked_account.get("balance", 0) >= self.summary().total
        return self.validate_bank_form()

    def summary(self) -> OrderTotals:
        return compute_totals(((i["price"], i["quantity"]) for i in self.cart.items), self.shipping_method)

    def next(self) -> int:
        if self.current_step == 1 and not self.validate_shipping():
            raise CheckoutError("Please fill in all shipping information")
        if self.current_step == 2 and not self.validate_payment():
            if self.use_linked_account and self.linked_account is not None:
                raise CheckoutError("Insufficient balance on the linked bank account")
            raise CheckoutError("Please fill in all payment information")
        self.current_step = min(self.current_step + 1, 3)
        return self.current_step

    def back(self) -> int:
        self.current_step = max(self.current_step - 1, 1)
        return self.current_step

    # step 3
    def build_payload(self, bank_account_id: str) -> dict:
        return {
            "items": [{"product_id": i["id"], "quantity": i["quantity"]} for i in self.cart.items],
            "shipping_address": self.shipping_address(),
            "payment_method": {"bank_account_id": bank_account_id},
            "shipping_method": self.shipping_method,
            "order_notes": self.order_notes,
            "total": self.summary().total,
        }

    def place_order(self, client: MarketplaceClient) -> dict:
        if self.current_step != 3:
            raise CheckoutError("Review your order before placing it")
        if not self.cart.items:
            raise CheckoutError("Your cart is empty")
        if self.is_processing:
            raise CheckoutError("Your order is already being placed")
        self.is_processing = True
        try:
            if not self.use_linked_account:
                self.linked_account = client.connect_bank_account(dict(self.bank_form))
                self.use_linked_account = True
            order = client.place_order(self.build_payload(self.linked_account["id"]), self.idempotency_key)
        finally:
            self.is_processing = False
        self.cart.clear()
        logger.info("Order %s placed", order.get("order_number"))
        return order
