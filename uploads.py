import hashlib
import hmac
import time
import uuid

from fastapi import APIRouter, Depends, HTTPException

from config import IMAGEKIT_PRIVATE_KEY, IMAGEKIT_PUBLIC_KEY, IMAGEKIT_TOKEN_TTL_SECONDS, IMAGEKIT_URL_ENDPOINT
from security import get_current_user

router = APIRouter(prefix="/api/upload", tags=["upload"])


def imagekit_auth_params(private_key: str, token: str = None, expire: int = None) -> dict:
    """Client-side upload parameters; ImageKit checks ``HMAC-SHA1(private_key, token + expire)``."""
    token = token or uuid.uuid4().hex
    expire = expire or int(time.time()) + IMAGEKIT_TOKEN_TTL_SECONDS
    signature = hmac.new(private_key.encode(), f"{token}{expire}".encode(), hashlib.sha1).hexdigest()
    return {"token": token, "expire": expire, "signature": signature}


@router.post("/imagekit-auth")
def imagekit_auth(user=Depends(get_current_user)):
    if not IMAGEKIT_PRIVATE_KEY:
        raise HTTPException(status_code=500, detail="Image uploads are not configured")
    return {
        **imagekit_auth_params(IMAGEKIT_PRIVATE_KEY),
        "publicKey": IMAGEKIT_PUBLIC_KEY,
        "urlEndpoint": IMAGEKIT_URL_ENDPOINT,
    }
