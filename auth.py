import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, serialize_doc
from schemas import User as UserSchema
from security import get_current_user, hash_password, public_user, token_for, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

DEFAULT_AVATAR = "https://images.unsplash.com/photo-1472099645785-5658abf4ff4e?w=400&h=400&fit=crop&crop=face"


class RegisterBody(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: Literal["customer", "vendor"] = "customer"


class LoginBody(BaseModel):
    email: EmailStr
    password: str


@router.post("/register", status_code=201)
def register(body: RegisterBody, db=Depends(get_db)):
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")
    user = UserSchema(
        name=body.name.strip(),
        email=email,
        password_hash=hash_password(body.password),
        role=body.role,
        avatar=DEFAULT_AVATAR,
    )
    try:
        user_id = create_document("user", user, db=db)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    logger.info("Registered %s account %s", body.role, user_id)
    suser = public_user(serialize_doc(db["user"].find_one({"email": email})))
    return {"success": True, "token": token_for(suser), "user": suser}


@router.post("/login")
def login(body: LoginBody, db=Depends(get_db)):
    user = db["user"].find_one({"email": body.email.lower()})
    if not user or not verify_password(body.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account is disabled")
    suser = public_user(serialize_doc(user))
    return {"success": True, "token": token_for(suser), "user": suser}


@router.get("/me")
def me(user=Depends(get_current_user)):
    return {"success": True, "user": public_user(user)}
