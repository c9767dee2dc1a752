import json
import logging
import math
import re
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import ReturnDocument

from cache import CATEGORIES_KEY, FEATURED_KEY, PRODUCTS_PREFIX, ResponseCache, get_cache
from config import CATEGORIES_TTL, FEATURED_TTL, PRODUCT_LIST_TTL
from database import create_document, get_db, now_utc, parse_object_id, serialize_doc
from pricing import normalize_categories
from schemas import Inventory, Product as ProductSchema
from security import get_current_user, get_vendor_for_user, require_roles, require_vendor_profile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

SORT_FIELDS = ("created_at", "price", "title", "views", "ratings.average")
ACTIVE_FILTER = {"status": "active", "is_deleted": False}


class ProductCreateBody(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: float = Field(..., ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    categories: List[str] = []
    tags: List[str] = []
    images: List[str] = []
    inventory: Inventory = Inventory()
    status: Literal["active", "inactive", "draft"] = "active"
    featured: bool = False


class ProductUpdateBody(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    images: Optional[List[str]] = None
    inventory: Optional[Inventory] = None
    status: Optional[Literal["active", "inactive", "draft"]] = None
    featured: Optional[bool] = None


def attach_vendors(db, products: List[dict], fields=("store_name",)) -> List[dict]:
    """Replace ``vendor_id`` references with a small embedded vendor summary."""
    ids = {p.get("vendor_id") for p in products if p.get("vendor_id")}
    oids = [parse_object_id(v, "Vendor") for v in ids]
    projection = {f: 1 for f in fields}
    vendors = {str(v["_id"]): v for v in db["vendor"].find({"_id": {"$in": oids}}, projection)}
    for p in products:
        v = vendors.get(p.get("vendor_id"))
        p["vendor"] = {"id": p.get("vendor_id"), **{f: v.get(f) for f in fields}} if v else None
    return products


def build_filter(category=None, search=None, min_price=None, max_price=None, featured=None, vendor=None) -> dict:
    filt = dict(ACTIVE_FILTER)
    if category:
        slugs = normalize_categories([category])
        filt["categories"] = slugs[0] if slugs else category
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        filt["$or"] = [{"title": pattern}, {"description": pattern}]
    if min_price is not None or max_price is not None:
        filt["price"] = {}
        if min_price is not None:
            filt["price"]["$gte"] = min_price
        if max_price is not None:
            filt["price"]["$lte"] = max_price
    if featured:
        filt["featured"] = True
    if vendor:
        filt["vendor_id"] = vendor
    return filt


def listing_cache_key(filt: dict, page: int, limit: int, sort_by: str, sort_order: str) -> str:
    return f"{PRODUCTS_PREFIX}{json.dumps(filt, sort_keys=True)}:{page}:{limit}:{sort_by}:{sort_order}"


def get_product_or_404(db, product_id: str) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "Product")})
    if not product or product.get("is_deleted"):
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def ensure_can_edit(db, product: dict, user: dict) -> None:
    if user.get("role") == "admin":
        return
    vendor = get_vendor_for_user(db, user)
    if not vendor or str(vendor["_id"]) != product.get("vendor_id"):
        raise HTTPException(status_code=403, detail="Not authorized to modify this product")


# ----------------------- Read path -----------------------
@router.get("")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    featured: Optional[bool] = None,
    vendor: Optional[str] = None,
    db=Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    if sort_by not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"Cannot sort by {sort_by}")
    filt = build_filter(category, search, min_price, max_price, featured, vendor)
    cache_key = listing_cache_key(filt, page, limit, sort_by, sort_order)
    cached = cache.get(cache_key)
    if cached:
        return cached

    direction = -1 if sort_order == "desc" else 1
    docs = (
        db["product"].find(filt)
        .sort(sort_by, direction)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    products = attach_vendors(db, [serialize_doc(d) for d in docs])
    total_products = db["product"].count_documents(filt)
    total_pages = math.ceil(total_products / limit)
    response = {
        "success": True,
        "products": products,
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_products": total_products,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
    cache.set(cache_key, response, PRODUCT_LIST_TTL)
    return response


@router.get("/featured")
def featured_products(db=Depends(get_db), cache: ResponseCache = Depends(get_cache)):
    cached = cache.get(FEATURED_KEY)
    if cached:
        return cached
    docs = db["product"].find({**ACTIVE_FILTER, "featured": True}).sort("ratings.average", -1).limit(8)
    response = {"success": True, "products": attach_vendors(db, [serialize_doc(d) for d in docs])}
    cache.set(FEATURED_KEY, response, FEATURED_TTL)
    return response


@router.get("/categories")
def list_categories(db=Depends(get_db), cache: ResponseCache = Depends(get_cache)):
    cached = cache.get(CATEGORIES_KEY)
    if cached:
        return cached
    rows = db["product"].aggregate([
        {"$match": ACTIVE_FILTER},
        {"$unwind": "$categories"},
        {"$group": {"_id": "$categories", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
    ])
    response = {"success": True, "categories": [{"name": r["_id"], "count": r["count"]} for r in rows]}
    cache.set(CATEGORIES_KEY, response, CATEGORIES_TTL)
    return response


@router.get("/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    product = db["product"].find_one_and_update(
        {"_id": parse_object_id(product_id, "Product"), "is_deleted": False},
        {"$inc": {"views": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    sproduct = attach_vendors(db, [serialize_doc(product)], fields=("store_name", "store_description", "contact"))[0]
    return {"success": True, "product": sproduct}


# ----------------------- Vendor writes -----------------------
@router.post("", status_code=201)
def create_product(
    body: ProductCreateBody,
    user=Depends(require_roles("vendor")),
    db=Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    vendor = require_vendor_profile(db, user)
    data = body.model_dump()
    data["categories"] = normalize_categories(body.categories)
    product = ProductSchema(vendor_id=str(vendor["_id"]), **data)
    pid = create_document("product", product, db=db)
    cache.invalidate_catalog()
    logger.info("Vendor %s created product %s", vendor["_id"], pid)
    return {"success": True, "product": serialize_doc(db["product"].find_one({"_id": parse_object_id(pid)}))}


@router.put("/{product_id}")
def update_product(
    product_id: str,
    body: ProductUpdateBody,
    user=Depends(get_current_user),
    db=Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    product = get_product_or_404(db, product_id)
    ensure_can_edit(db, product, user)
    update = body.model_dump(exclude_none=True)
    if "categories" in update:
        update["categories"] = normalize_categories(update["categories"])
    update["updated_at"] = now_utc()
    db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    cache.invalidate_catalog()
    return {"success": True, "product": serialize_doc(db["product"].find_one({"_id": product["_id"]}))}


@router.delete("/{product_id}")
def delete_product(
    product_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    product = get_product_or_404(db, product_id)
    ensure_can_edit(db, product, user)
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"is_deleted": True, "status": "inactive", "updated_at": now_utc()}},
    )
    cache.invalidate_catalog()
    logger.info("Product %s deleted by %s", product_id, user["id"])
    return {"success": True, "message": "Product deleted"}
