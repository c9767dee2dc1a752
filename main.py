import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import admin
import auth
import catalog
import orders
import payments
import uploads
import vendors
from cache import ResponseCache, get_cache
from config import ALLOW_SEED, CLIENT_URL, ENVIRONMENT, LOG_LEVEL, PORT
from database import create_document, db as configured_db, ensure_indexes, get_db
from pricing import normalize_categories
from schemas import Product as ProductSchema, User as UserSchema, Vendor as VendorSchema
from security import hash_password

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

STARTED_AT = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if configured_db is not None:
        try:
            ensure_indexes(configured_db)
        except PyMongoError as e:
            logger.error("Could not ensure indexes: %s", e)
    logger.info("ArtisanMarket API starting (%s)", ENVIRONMENT)
    yield


app = FastAPI(title="ArtisanMarket API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[CLIENT_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Idempotency-Key"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)

for module in (auth, catalog, orders, vendors, payments, uploads, admin):
    app.include_router(module.router)
app.include_router(vendors.proof_router)
app.include_router(payments.bank_router)


# ----------------------- Logging & errors -----------------------
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = f"Route {request.url.path} not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": message, "errors": jsonable_errors(errors)},
    )


def jsonable_errors(errors):
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors]


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "ArtisanMarket API running"}


@app.get("/health")
def health():
    return {
        "status": "OK",
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "uptime": round(time.time() - STARTED_AT, 1),
        "environment": ENVIRONMENT,
    }


@app.get("/test")
def test_database(cache: ResponseCache = Depends(get_cache)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "cache": "✅ Enabled" if cache.enabled else "⚠️  Disabled",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        database = get_db()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
        response["collections"] = database.list_collection_names()[:10]
    except HTTPException:
        pass
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "title": "Hand-thrown Stoneware Mug",
        "description": "Wheel-thrown stoneware mug with a speckled oatmeal glaze.",
        "price": 28.0,
        "categories": ["Ceramics", "Kitchen"],
        "images": ["https://images.unsplash.com/photo-1514228742587-6b1558fcca3d"],
        "inventory": {"quantity": 40, "sku": "CER-001"},
        "featured": True,
        "ratings": {"average": 4.8, "count": 52},
    },
    {
        "title": "Walnut Serving Board",
        "description": "Single-piece black walnut board finished with beeswax.",
        "price": 64.0,
        "categories": ["Woodwork", "Kitchen"],
        "images": ["https://images.unsplash.com/photo-1540638349517-3abd5afc5847"],
        "inventory": {"quantity": 15, "sku": "WD-014"},
        "featured": True,
        "ratings": {"average": 4.9, "count": 31},
    },
    {
        "title": "Indigo Shibori Scarf",
        "description": "Silk scarf folded, bound and dyed in natural indigo.",
        "price": 45.0,
        "categories": ["Textiles", "Accessories"],
        "images": ["https://images.unsplash.com/photo-1601924994987-69e26d50dc26"],
        "inventory": {"quantity": 22, "sku": "TX-203"},
        "ratings": {"average": 4.6, "count": 18},
    },
    {
        "title": "Hammered Silver Ring",
        "description": "Sterling silver band with a hand-hammered texture.",
        "price": 72.0,
        "categories": ["Jewelry"],
        "images": ["https://images.unsplash.com/photo-1605100804763-247f67b3557e"],
        "inventory": {"quantity": 9, "sku": "JW-077"},
        "ratings": {"average": 4.7, "count": 24},
    },
]


@app.post("/seed")
def seed(db=Depends(get_db), cache: ResponseCache = Depends(get_cache)):
    if not ALLOW_SEED:
        raise HTTPException(status_code=404, detail="Route /seed not found")
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    if db["user"].count_documents({"role": "admin"}) == 0:
        admin_user = UserSchema(name="Admin", email="admin@artisanmarket.com", password_hash=hash_password("admin123"), role="admin")
        create_document("user", admin_user, db=db)
    vendor_user = UserSchema(name="Vendor Demo", email="vendor@artisanmarket.com", password_hash=hash_password("demo123"), role="vendor")
    vendor_user_id = create_document("user", vendor_user, db=db)
    vendor = VendorSchema(
        user_id=vendor_user_id,
        store_name="Clay & Grain Studio",
        store_description="Small-batch ceramics and woodwork from a two-person studio.",
        contact={"email": "vendor@artisanmarket.com"},
        verification={"status": "verified"},
    )
    vendor_id = create_document("vendor", vendor, db=db)
    customer = UserSchema(name="Demo User", email="demo@artisanmarket.com", password_hash=hash_password("demo123"))
    create_document("user", customer, db=db)
    for p in DEMO_PRODUCTS:
        prod = ProductSchema(vendor_id=vendor_id, **{**p, "categories": normalize_categories(p["categories"])})
        create_document("product", prod, db=db)
    cache.invalidate_catalog()
    logger.info("Seeded demo data")
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
