import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from database import get_db, get_documents, now_utc, parse_object_id, serialize_doc
from pricing import to_money
from security import require_roles

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class VerificationBody(BaseModel):
    status: Literal["pending", "verified", "rejected"]


@router.get("/dashboard")
def dashboard(user=Depends(require_roles("admin")), db=Depends(get_db)):
    paid = db["order"].find({"status": {"$ne": "cancelled"}}, {"total": 1})
    revenue = sum(o.get("total", 0) for o in paid)
    by_status = {
        status: db["order"].count_documents({"status": status})
        for status in ("pending", "processing", "shipped", "delivered", "cancelled")
    }
    return {
        "success": True,
        "stats": {
            "users": db["user"].count_documents({}),
            "vendors": db["vendor"].count_documents({}),
            "products": db["product"].count_documents({"is_deleted": False}),
            "orders": db["order"].count_documents({}),
            "orders_by_status": by_status,
            "revenue": float(to_money(revenue)),
        },
    }


@router.get("/vendors")
def list_vendors(status: Optional[str] = None, user=Depends(require_roles("admin")), db=Depends(get_db)):
    filt = {"verification.status": status} if status else {}
    vendors = sorted(get_documents("vendor", filt, db=db), key=lambda v: v["created_at"], reverse=True)
    return {"success": True, "vendors": [serialize_doc(v) for v in vendors]}


@router.patch("/vendors/{vendor_id}/verification")
def set_verification(vendor_id: str, body: VerificationBody, user=Depends(require_roles("admin")), db=Depends(get_db)):
    oid = parse_object_id(vendor_id, "Vendor")
    verified_at = now_utc() if body.status == "verified" else None
    res = db["vendor"].update_one(
        {"_id": oid},
        {"$set": {"verification.status": body.status, "verification.verified_at": verified_at, "updated_at": now_utc()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Vendor not found")
    logger.info("Vendor %s verification set to %s by %s", vendor_id, body.status, user["id"])
    return {"success": True, "vendor": serialize_doc(db["vendor"].find_one({"_id": oid}))}
