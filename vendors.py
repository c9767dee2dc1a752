import logging
from collections import defaultdict
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from config import DEFAULT_COMMISSION_RATE
from database import create_document, get_db, now_utc, parse_object_id, serialize_doc
from order_workflow import get_order_or_404, order_vendor_ids, record_delivery_proof, reupload_seconds_left
from pricing import to_money
from schemas import Business, Contact, Financials, Vendor as VendorSchema
from security import get_current_user, require_roles, require_vendor_profile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vendors", tags=["vendors"])
proof_router = APIRouter(prefix="/api/delivery-proof", tags=["delivery-proof"])

PUBLIC_FIELDS = ("store_name", "slogan", "store_description", "logo", "banner", "contact", "specialties", "verification")


class VendorProfileBody(BaseModel):
    store_name: str = Field(..., min_length=2, max_length=100)
    slogan: Optional[str] = Field(None, max_length=150)
    store_description: str = Field("", max_length=2000)
    logo: Optional[str] = None
    banner: Optional[str] = None
    contact: Contact
    business: Business = Business()
    specialties: List[str] = []


class VendorProfileUpdate(BaseModel):
    store_name: Optional[str] = Field(None, min_length=2, max_length=100)
    slogan: Optional[str] = Field(None, max_length=150)
    store_description: Optional[str] = Field(None, max_length=2000)
    logo: Optional[str] = None
    banner: Optional[str] = None
    contact: Optional[Contact] = None
    business: Optional[Business] = None
    specialties: Optional[List[str]] = None


class DeliveryProofBody(BaseModel):
    image_url: str = Field(..., min_length=1)
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    location: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=500)


def vendor_view(order: dict, vendor_id: str) -> dict:
    """The order as one vendor sees it: only their own lines."""
    sorder = serialize_doc(order)
    sorder["items"] = [i for i in sorder["items"] if i["vendor_id"] == vendor_id]
    sorder["vendor_subtotal"] = float(to_money(sum(i["price"] * i["quantity"] for i in sorder["items"])))
    return sorder


def compute_vendor_stats(db, vendor: dict, year: int) -> dict:
    vendor_id = str(vendor["_id"])
    commission = vendor.get("financials", {}).get("commission_rate", DEFAULT_COMMISSION_RATE)
    orders = list(db["order"].find({"items.vendor_id": vendor_id, "status": {"$ne": "cancelled"}}))
    monthly = [0.0] * 12
    per_product = defaultdict(lambda: {"title": "", "sales": 0, "revenue": 0.0})
    total_sales, revenue = 0, 0.0
    for order in orders:
        created = order.get("created_at")
        for item in order["items"]:
            if item["vendor_id"] != vendor_id:
                continue
            line = item["price"] * item["quantity"]
            total_sales += item["quantity"]
            revenue += line
            entry = per_product[item["product_id"]]
            entry["title"] = item["title"]
            entry["sales"] += item["quantity"]
            entry["revenue"] += line
            if created is not None and created.year == year:
                monthly[created.month - 1] += line
    top = sorted(per_product.items(), key=lambda kv: kv[1]["revenue"], reverse=True)[:5]
    return {
        "total_products": db["product"].count_documents({"vendor_id": vendor_id, "is_deleted": False}),
        "total_orders": len(orders),
        "total_sales": total_sales,
        "total_revenue": float(to_money(revenue)),
        "net_revenue": float(to_money(revenue * (1 - commission))),
        "commission_rate": commission,
        "monthly_revenue": [float(to_money(m)) for m in monthly],
        "top_products": [
            {"id": pid, "title": e["title"], "sales": e["sales"], "revenue": float(to_money(e["revenue"]))}
            for pid, e in top
        ],
    }


# ----------------------- Store profile -----------------------
@router.post("/profile", status_code=201)
def create_profile(body: VendorProfileBody, user=Depends(require_roles("vendor")), db=Depends(get_db)):
    if db["vendor"].find_one({"user_id": user["id"]}):
        raise HTTPException(status_code=400, detail="Vendor profile already exists")
    vendor = VendorSchema(
        user_id=user["id"],
        financials=Financials(commission_rate=DEFAULT_COMMISSION_RATE),
        **body.model_dump(),
    )
    try:
        vid = create_document("vendor", vendor, db=db)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Vendor profile already exists")
    logger.info("Vendor profile %s created for user %s", vid, user["id"])
    return {"success": True, "vendor": serialize_doc(db["vendor"].find_one({"_id": parse_object_id(vid)}))}


@router.get("/profile")
def get_profile(user=Depends(require_roles("vendor")), db=Depends(get_db)):
    return {"success": True, "vendor": serialize_doc(require_vendor_profile(db, user))}


@router.put("/profile")
def update_profile(body: VendorProfileUpdate, user=Depends(require_roles("vendor")), db=Depends(get_db)):
    vendor = require_vendor_profile(db, user)
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = now_utc()
    db["vendor"].update_one({"_id": vendor["_id"]}, {"$set": update})
    return {"success": True, "vendor": serialize_doc(db["vendor"].find_one({"_id": vendor["_id"]}))}


@router.get("/stats")
def get_stats(user=Depends(require_roles("vendor")), db=Depends(get_db)):
    vendor = require_vendor_profile(db, user)
    return {"success": True, "stats": compute_vendor_stats(db, vendor, now_utc().year)}


@router.get("/orders")
def get_vendor_orders(status: Optional[str] = None, user=Depends(require_roles("vendor")), db=Depends(get_db)):
    vendor = require_vendor_profile(db, user)
    vendor_id = str(vendor["_id"])
    filt = {"items.vendor_id": vendor_id}
    if status:
        filt["status"] = status
    docs = db["order"].find(filt).sort("created_at", -1).limit(100)
    return {"success": True, "orders": [vendor_view(d, vendor_id) for d in docs]}


@router.get("/public/{vendor_id}")
def get_public_store(vendor_id: str, db=Depends(get_db)):
    vendor = db["vendor"].find_one({"_id": parse_object_id(vendor_id, "Store"), "is_active": True})
    if not vendor:
        raise HTTPException(status_code=404, detail="Store not found")
    store = {"id": str(vendor["_id"]), **{f: vendor.get(f) for f in PUBLIC_FIELDS}}
    products = db["product"].find({"vendor_id": vendor_id, "status": "active", "is_deleted": False}).sort("created_at", -1)
    return {"success": True, "store": serialize_doc(store), "products": [serialize_doc(p) for p in products]}


# ----------------------- Delivery proof -----------------------
@router.post("/orders/{order_id}/delivery-proof")
def upload_delivery_proof(
    order_id: str,
    body: DeliveryProofBody,
    user=Depends(require_roles("vendor")),
    db=Depends(get_db),
):
    vendor = require_vendor_profile(db, user)
    order = get_order_or_404(db, order_id)
    vendor_id = str(vendor["_id"])
    if vendor_id not in order_vendor_ids(order):
        raise HTTPException(status_code=403, detail="Not authorized to update this order")
    proof = record_delivery_proof(db, order, vendor_id, body.model_dump())
    return {
        "success": True,
        "delivery_proof": serialize_doc(proof),
        "reupload_seconds_left": reupload_seconds_left(proof),
    }


@proof_router.get("/order/{order_id}")
def get_delivery_proof(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    order = get_order_or_404(db, order_id)
    vendor = db["vendor"].find_one({"user_id": user["id"]}) if user.get("role") == "vendor" else None
    vendor_id = str(vendor["_id"]) if vendor else None
    allowed = (
        user.get("role") == "admin"
        or order["customer_id"] == user["id"]
        or vendor_id in order_vendor_ids(order)
    )
    if not allowed:
        raise HTTPException(status_code=403, detail="Not authorized to view this order")
    filt = {"order_id": str(order["_id"])}
    if vendor_id and user.get("role") == "vendor":
        filt["vendor_id"] = vendor_id
    proofs = list(db["deliveryproof"].find(filt).sort("uploaded_at", 1))
    if not proofs:
        raise HTTPException(status_code=404, detail="Delivery proof not found")
    return {
        "success": True,
        "delivery_proof": serialize_doc(proofs[0]),
        "delivery_proofs": [serialize_doc(p) for p in proofs],
    }
