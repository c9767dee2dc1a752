import os

from dotenv import load_dotenv

load_dotenv()

# ----------------------- Environment -----------------------
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")

DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("MONGODB_URI")
DATABASE_NAME = os.getenv("DATABASE_NAME", "artisanmarket")
REDIS_URL = os.getenv("REDIS_URL")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 30))

IMAGEKIT_PUBLIC_KEY = os.getenv("IMAGEKIT_PUBLIC_KEY", "")
IMAGEKIT_PRIVATE_KEY = os.getenv("IMAGEKIT_PRIVATE_KEY", "")
IMAGEKIT_URL_ENDPOINT = os.getenv("IMAGEKIT_URL_ENDPOINT", "")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY", "")

# sandbox stand-in for the bank-linking provider
BANK_SANDBOX_BALANCE = float(os.getenv("BANK_SANDBOX_BALANCE", "5000.00"))

ALLOW_SEED = os.getenv("ALLOW_SEED", "false").lower() in ("1", "true", "yes")

# ----------------------- Business rules -----------------------
TAX_RATE = "0.08"
SHIPPING_RATES = {
    "free": "0",
    "standard": "8",
    "express": "15",
}
DELIVERY_DAYS = {
    "free": 10,
    "standard": 5,
    "express": 2,
}
DEFAULT_COMMISSION_RATE = 0.10

PRODUCT_LIST_TTL = 300
FEATURED_TTL = 600
CATEGORIES_TTL = 3600

PROOF_REUPLOAD_MINUTES = 15
IMAGEKIT_TOKEN_TTL_SECONDS = 30 * 60
