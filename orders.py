import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response
from pydantic import BaseModel, Field

from cache import ResponseCache, get_cache
from database import get_db, serialize_doc
from order_workflow import (
    attach_tracking,
    cancel_order,
    change_status,
    get_order_or_404,
    item_count,
    order_vendor_ids,
    place_order,
)
from schemas import ShippingAddress
from security import get_current_user, get_vendor_for_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


class OrderItemBody(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1, le=100)


class PaymentSelection(BaseModel):
    bank_account_id: str


class OrderCreateBody(BaseModel):
    items: List[OrderItemBody] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentSelection
    shipping_method: Literal["free", "standard", "express"] = "standard"
    order_notes: Optional[str] = Field(None, max_length=500)
    total: float = Field(..., ge=0)


class StatusBody(BaseModel):
    status: Literal["pending", "processing", "shipped", "delivered", "cancelled"]


class TrackingBody(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=100)
    tracking_url: Optional[str] = None


def present(order: dict) -> dict:
    sorder = serialize_doc(order)
    sorder["item_count"] = item_count(order)
    return sorder


def vendor_id_of(db, user: dict) -> Optional[str]:
    if user.get("role") != "vendor":
        return None
    vendor = get_vendor_for_user(db, user)
    return str(vendor["_id"]) if vendor else None


def ensure_can_view(db, order: dict, user: dict) -> None:
    if user.get("role") == "admin" or order["customer_id"] == user["id"]:
        return
    if vendor_id_of(db, user) in order_vendor_ids(order):
        return
    raise HTTPException(status_code=403, detail="Not authorized to view this order")


def ensure_can_fulfill(db, order: dict, user: dict) -> None:
    if user.get("role") == "admin":
        return
    if vendor_id_of(db, user) in order_vendor_ids(order):
        return
    raise HTTPException(status_code=403, detail="Not authorized to update this order")


@router.post("", status_code=201)
def create_order(
    body: OrderCreateBody,
    response: Response,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=200),
    user=Depends(require_roles("customer")),
    db=Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    order, created = place_order(
        db,
        user,
        items=[(i.product_id, i.quantity) for i in body.items],
        shipping_address=body.shipping_address,
        bank_account_id=body.payment_method.bank_account_id,
        shipping_method=body.shipping_method,
        client_total=body.total,
        order_notes=body.order_notes,
        idempotency_key=idempotency_key,
    )
    if created:
        # stock levels changed under cached listings
        cache.invalidate_catalog()
        return {"success": True, "order": present(order)}
    response.status_code = 200
    return {"success": True, "replayed": True, "order": present(order)}


@router.get("")
def list_orders(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    role = user.get("role")
    if role == "admin":
        filt = {}
    elif role == "vendor":
        vendor_id = vendor_id_of(db, user)
        if not vendor_id:
            raise HTTPException(status_code=404, detail="Vendor profile not found")
        filt = {"items.vendor_id": vendor_id}
    else:
        filt = {"customer_id": user["id"]}
    if status:
        filt["status"] = status
    docs = db["order"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    total = db["order"].count_documents(filt)
    return {
        "success": True,
        "orders": [present(d) for d in docs],
        "pagination": {"current_page": page, "total_orders": total, "has_next": page * limit < total},
    }


@router.get("/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    order = get_order_or_404(db, order_id)
    ensure_can_view(db, order, user)
    return {"success": True, "order": present(order)}


@router.patch("/{order_id}/status")
def update_status(
    order_id: str,
    body: StatusBody,
    user=Depends(get_current_user),
    db=Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    order = get_order_or_404(db, order_id)
    ensure_can_fulfill(db, order, user)
    updated = change_status(db, order, body.status, user)
    if body.status == "cancelled":
        cache.invalidate_catalog()
    return {"success": True, "order": present(updated)}


@router.patch("/{order_id}/tracking")
def update_tracking(order_id: str, body: TrackingBody, user=Depends(get_current_user), db=Depends(get_db)):
    order = get_order_or_404(db, order_id)
    ensure_can_fulfill(db, order, user)
    updated = attach_tracking(db, order, body.tracking_number.strip(), body.tracking_url, user)
    return {"success": True, "order": present(updated)}


@router.patch("/{order_id}/cancel")
def cancel(
    order_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    order = get_order_or_404(db, order_id)
    updated = cancel_order(db, order, user)
    cache.invalidate_catalog()
    return {"success": True, "message": "Order cancelled", "order": present(updated)}
