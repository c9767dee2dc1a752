"""
Order placement and fulfillment.

Placement reserves stock and charges the linked bank account with guarded
atomic updates (``find_one_and_update`` on a quantity or balance filter). When
any step fails, every reservation already made is given back before the error
is raised, so a rejected checkout leaves inventory and balances untouched.

Status changes are conditional on the status that was read, which makes two
racing transitions on the same order resolve to exactly one winner.
"""
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import PROOF_REUPLOAD_MINUTES
from database import as_utc, create_document, now_utc, parse_object_id
from pricing import compute_totals, estimated_delivery, generate_order_number, to_money, totals_match
from schemas import DeliveryProof, Order as OrderSchema, OrderItem, PaymentMethodSummary, ShippingAddress

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}
TRACKABLE_STATUSES = {"pending", "processing", "shipped"}
PROOF_STATUSES = {"processing", "shipped", "delivered"}
REFUNDABLE_STATUSES = {"pending", "processing"}
BALANCE_RETRIES = 5


def can_transition(current: str, new: str) -> bool:
    return new in ORDER_TRANSITIONS.get(current, set())


def order_vendor_ids(order: dict) -> set:
    return {item["vendor_id"] for item in order.get("items", [])}


def item_count(order: dict) -> int:
    return sum(item["quantity"] for item in order.get("items", []))


def get_order_or_404(db, order_id: str) -> dict:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "Order")})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


# ----------------------- Inventory -----------------------
def _tracked(lines: Iterable[OrderItem], products: dict) -> List[OrderItem]:
    return [l for l in lines if products[l.product_id].get("inventory", {}).get("track_quantity", True)]


def reserve_inventory(db, lines: List[OrderItem]) -> None:
    reserved = []
    for line in lines:
        updated = db["product"].find_one_and_update(
            {"_id": parse_object_id(line.product_id, "Product"), "inventory.quantity": {"$gte": line.quantity}},
            {"$inc": {"inventory.quantity": -line.quantity}},
        )
        if updated is None:
            release_inventory(db, reserved)
            raise HTTPException(status_code=400, detail=f"Insufficient inventory for {line.title}")
        reserved.append(line)


def release_inventory(db, lines: Iterable) -> None:
    for line in lines:
        product_id = line.product_id if isinstance(line, OrderItem) else line["product_id"]
        quantity = line.quantity if isinstance(line, OrderItem) else line["quantity"]
        db["product"].update_one(
            {"_id": parse_object_id(product_id, "Product")},
            {"$inc": {"inventory.quantity": quantity}},
        )


# ----------------------- Placement -----------------------
def _merge_quantities(items: Iterable[Tuple[str, int]]) -> "OrderedDict[str, int]":
    merged = OrderedDict()
    for product_id, quantity in items:
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def price_lines(db, items: Iterable[Tuple[str, int]]) -> Tuple[List[OrderItem], dict]:
    """Snapshot current price, title and vendor for every requested product."""
    lines, products = [], {}
    for product_id, quantity in _merge_quantities(items).items():
        product = db["product"].find_one({"_id": parse_object_id(product_id, "Product")})
        if not product or product.get("is_deleted"):
            raise HTTPException(status_code=404, detail="Product not found")
        if product.get("status") != "active":
            raise HTTPException(status_code=400, detail=f"{product['title']} is not available")
        products[product_id] = product
        lines.append(OrderItem(
            product_id=product_id,
            title=product["title"],
            quantity=quantity,
            price=product["price"],
            vendor_id=product["vendor_id"],
        ))
    return lines, products


def place_order(
    db,
    customer: dict,
    items: List[Tuple[str, int]],
    shipping_address: ShippingAddress,
    bank_account_id: str,
    shipping_method: str,
    client_total: float,
    order_notes: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[dict, bool]:
    """Place an order; returns ``(order document, created)``.

    ``created`` is False when ``idempotency_key`` matched an earlier order of the
    same customer, in which case nothing is charged or reserved again.
    """
    now = now or now_utc()
    if idempotency_key:
        existing = db["order"].find_one({"customer_id": customer["id"], "idempotency_key": idempotency_key})
        if existing:
            logger.info("Replaying order %s for key %s", existing["order_number"], idempotency_key)
            return existing, False
    if not items:
        raise HTTPException(status_code=400, detail="Order must contain at least one item")

    lines, products = price_lines(db, items)
    totals = compute_totals(((l.price, l.quantity) for l in lines), shipping_method)
    if not totals_match(client_total, totals.total):
        raise HTTPException(
            status_code=400,
            detail=f"Order total does not match current prices (expected {totals.total:.2f})",
        )

    account = db["bankaccount"].find_one({
        "_id": parse_object_id(bank_account_id, "Bank account"),
        "user_id": customer["id"],
    })
    if not account:
        raise HTTPException(status_code=404, detail="Bank account not found")
    if account["balance"] < totals.total:
        raise HTTPException(status_code=400, detail="Insufficient account balance")

    tracked = _tracked(lines, products)
    reserve_inventory(db, tracked)

    if adjust_balance(db, account["_id"], -totals.total) is None:
        release_inventory(db, tracked)
        raise HTTPException(status_code=400, detail="Insufficient account balance")

    try:
        order = OrderSchema(
            order_number=generate_order_number(db, now),
            customer_id=customer["id"],
            items=lines,
            shipping_address=shipping_address,
            payment_method=PaymentMethodSummary(
                bank_account_id=str(account["_id"]),
                bank_name=account["bank_name"],
                account_last4=account["account_last4"],
            ),
            shipping_method=shipping_method,
            order_notes=order_notes,
            status="pending",
            payment_status="completed",
            subtotal=totals.subtotal,
            shipping_cost=totals.shipping_cost,
            tax=totals.tax,
            total=totals.total,
            estimated_delivery=estimated_delivery(shipping_method, now),
            is_paid=True,
            payment_transaction_id=f"txn_{uuid.uuid4().hex[:16]}",
            idempotency_key=idempotency_key or uuid.uuid4().hex,
            status_history=[{"status": "pending", "at": now, "by": customer["id"]}],
        )
        order_id = create_document("order", {**order.model_dump(), "created_at": now}, db=db)
    except DuplicateKeyError:
        # a concurrent request with the same idempotency key won the insert
        _undo_placement(db, account["_id"], totals.total, tracked)
        existing = db["order"].find_one({"customer_id": customer["id"], "idempotency_key": idempotency_key})
        if existing:
            return existing, False
        raise
    except Exception as e:
        logger.error("Order for %s failed after payment, rolling back: %s", customer["id"], e)
        _undo_placement(db, account["_id"], totals.total, tracked)
        raise
    logger.info("Order %s placed by %s, total %.2f", order.order_number, customer["id"], totals.total)
    return db["order"].find_one({"_id": parse_object_id(order_id)}), True


def _undo_placement(db, account_id, amount: float, tracked: List[OrderItem]) -> None:
    adjust_balance(db, account_id, amount)
    release_inventory(db, tracked)


# ----------------------- Balances -----------------------
def adjust_balance(db, account_id, delta: float) -> Optional[dict]:
    """Add ``delta`` to an account balance, rounded to cents.

    Compare-and-set on the balance that was read; returns None when the account
    is gone or the result would be negative.
    """
    for _ in range(BALANCE_RETRIES):
        account = db["bankaccount"].find_one({"_id": account_id}, {"balance": 1})
        if account is None:
            return None
        new_balance = to_money(account["balance"]) + to_money(delta)
        if new_balance < 0:
            return None
        updated = db["bankaccount"].find_one_and_update(
            {"_id": account_id, "balance": account["balance"]},
            {"$set": {"balance": float(new_balance), "updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return updated
    raise HTTPException(status_code=409, detail="Account balance changed concurrently, please retry")


def release_order(db, order: dict) -> None:
    """Give back stock and money held by an order that is being cancelled."""
    tracked = []
    for item in order["items"]:
        product = db["product"].find_one({"_id": parse_object_id(item["product_id"], "Product")}, {"inventory": 1})
        if product and product.get("inventory", {}).get("track_quantity", True):
            tracked.append(item)
    release_inventory(db, tracked)
    if not order.get("is_paid"):
        return
    account_id = parse_object_id(order["payment_method"]["bank_account_id"], "Bank account")
    if adjust_balance(db, account_id, order["total"]) is None:
        logger.error("Refund for order %s failed: bank account %s is gone", order["order_number"], account_id)
        db["order"].update_one({"_id": order["_id"]}, {"$set": {"payment_status": "failed"}})
        return
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"payment_status": "refunded", "is_paid": False}},
    )


# ----------------------- Status changes -----------------------
def _apply_status(db, order: dict, new_status: str, actor: dict, now: datetime, extra: Optional[dict] = None) -> dict:
    update = {"status": new_status, "updated_at": now, **(extra or {})}
    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": order["status"]},
        {
            "$set": update,
            "$push": {"status_history": {"status": new_status, "at": now, "by": actor["id"]}},
        },
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="Order was modified concurrently, please retry")
    return updated


def change_status(db, order: dict, new_status: str, actor: dict, now: Optional[datetime] = None) -> dict:
    now = now or now_utc()
    current = order["status"]
    if not can_transition(current, new_status):
        raise HTTPException(status_code=400, detail=f"Cannot change order status from {current} to {new_status}")
    extra = {"cancelled_at": now} if new_status == "cancelled" else None
    updated = _apply_status(db, order, new_status, actor, now, extra)
    if new_status == "cancelled":
        release_order(db, updated)
        updated = db["order"].find_one({"_id": order["_id"]})
    logger.info("Order %s moved %s -> %s by %s", order["order_number"], current, new_status, actor["id"])
    return updated


def cancel_order(db, order: dict, customer: dict, now: Optional[datetime] = None) -> dict:
    if order["customer_id"] != customer["id"]:
        raise HTTPException(status_code=403, detail="Only the customer who placed this order can cancel it")
    if order["status"] != "pending":
        raise HTTPException(status_code=400, detail="Only pending orders can be cancelled")
    return change_status(db, order, "cancelled", customer, now)


def attach_tracking(db, order: dict, tracking_number: str, tracking_url: Optional[str], actor: dict,
                    now: Optional[datetime] = None) -> dict:
    now = now or now_utc()
    if order["status"] not in TRACKABLE_STATUSES:
        raise HTTPException(status_code=400, detail=f"Cannot add tracking to a {order['status']} order")
    extra = {"tracking_number": tracking_number, "tracking_url": tracking_url}
    if order["status"] == "shipped":
        db["order"].update_one({"_id": order["_id"], "status": "shipped"}, {"$set": {**extra, "updated_at": now}})
        updated = db["order"].find_one({"_id": order["_id"]})
    else:
        updated = _apply_status(db, order, "shipped", actor, now, extra)
    logger.info("Tracking %s attached to order %s", tracking_number, order["order_number"])
    return updated


# ----------------------- Delivery proof -----------------------
def record_delivery_proof(db, order: dict, vendor_id: str, proof: dict, now: Optional[datetime] = None) -> dict:
    """Store or replace the vendor's arrival photo for an order.

    Replacing is only possible within PROOF_REUPLOAD_MINUTES of the first upload,
    measured against the stored ``uploaded_at``.
    """
    now = now or now_utc()
    if order["status"] not in PROOF_STATUSES:
        raise HTTPException(status_code=400, detail=f"Cannot upload delivery proof for a {order['status']} order")
    order_id = str(order["_id"])
    key = {"order_id": order_id, "vendor_id": vendor_id}
    existing = db["deliveryproof"].find_one(key)
    if existing is None:
        doc = DeliveryProof(order_id=order_id, vendor_id=vendor_id, uploaded_at=now, **proof)
        try:
            create_document("deliveryproof", doc, db=db)
            logger.info("Delivery proof uploaded for order %s by vendor %s", order["order_number"], vendor_id)
            return db["deliveryproof"].find_one(key)
        except DuplicateKeyError:
            # another first upload for the same order landed in between
            existing = db["deliveryproof"].find_one(key)

    deadline = as_utc(existing["uploaded_at"]) + timedelta(minutes=PROOF_REUPLOAD_MINUTES)
    if as_utc(now) > deadline:
        raise HTTPException(
            status_code=400,
            detail=f"Delivery proof can only be replaced within {PROOF_REUPLOAD_MINUTES} minutes of the first upload",
        )
    db["deliveryproof"].update_one(
        {"_id": existing["_id"]},
        {"$set": {**proof, "updated_at": now}, "$inc": {"upload_count": 1}},
    )
    logger.info("Delivery proof replaced for order %s by vendor %s", order["order_number"], vendor_id)
    return db["deliveryproof"].find_one(key)


def reupload_seconds_left(proof: dict, now: Optional[datetime] = None) -> int:
    now = now or now_utc()
    deadline = as_utc(proof["uploaded_at"]) + timedelta(minutes=PROOF_REUPLOAD_MINUTES)
    return max(0, int((deadline - as_utc(now)).total_seconds()))
