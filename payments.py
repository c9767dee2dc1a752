"""
Bank-account linking and payment placeholders.

Linking runs against a sandbox in place of a Plaid-style provider: the full
account and routing numbers are validated once and only their last four
digits are kept, and a new account starts at BANK_SANDBOX_BALANCE.
"""
import logging
import re
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from pymongo.errors import DuplicateKeyError

from config import BANK_SANDBOX_BALANCE, STRIPE_PUBLISHABLE_KEY
from database import create_document, get_db, now_utc, serialize_doc
from order_workflow import REFUNDABLE_STATUSES
from schemas import BankAccount as BankAccountSchema
from security import get_current_user

logger = logging.getLogger(__name__)

bank_router = APIRouter(prefix="/api/bank", tags=["bank"])
router = APIRouter(prefix="/api/payments", tags=["payments"])

ACCOUNT_NUMBER_RE = re.compile(r"^\d{4,17}$")
ROUTING_NUMBER_RE = re.compile(r"^\d{9}$")


def _digits(value: str) -> str:
    return re.sub(r"[\s-]", "", value or "")


class BankConnectBody(BaseModel):
    account_holder: str = Field(..., min_length=2, max_length=100)
    bank_name: str = Field(..., min_length=2, max_length=100)
    account_number: str
    routing_number: str
    account_type: Literal["checking", "savings"] = "checking"

    @field_validator("account_number")
    @classmethod
    def check_account_number(cls, v):
        v = _digits(v)
        if not ACCOUNT_NUMBER_RE.match(v):
            raise ValueError("Account number must be 4 to 17 digits")
        return v

    @field_validator("routing_number")
    @classmethod
    def check_routing_number(cls, v):
        v = _digits(v)
        if not ROUTING_NUMBER_RE.match(v):
            raise ValueError("Routing number must be 9 digits")
        return v


class BankUpdateBody(BaseModel):
    account_holder: Optional[str] = Field(None, min_length=2, max_length=100)
    bank_name: Optional[str] = Field(None, min_length=2, max_length=100)
    account_type: Optional[Literal["checking", "savings"]] = None


class PaymentIntentBody(BaseModel):
    amount: float = Field(..., gt=0)
    currency: str = "usd"


def masked(account: dict) -> dict:
    saccount = serialize_doc(account)
    saccount["account_number_masked"] = f"****{account['account_last4']}"
    return saccount


def get_account_or_404(db, user: dict) -> dict:
    account = db["bankaccount"].find_one({"user_id": user["id"]})
    if not account:
        raise HTTPException(status_code=404, detail="No bank account linked")
    return account


# ----------------------- Bank accounts -----------------------
@bank_router.post("/connect", status_code=201)
def connect_account(body: BankConnectBody, user=Depends(get_current_user), db=Depends(get_db)):
    if db["bankaccount"].find_one({"user_id": user["id"]}):
        raise HTTPException(status_code=400, detail="A bank account is already linked")
    account = BankAccountSchema(
        user_id=user["id"],
        account_holder=body.account_holder.strip(),
        bank_name=body.bank_name.strip(),
        account_type=body.account_type,
        account_last4=body.account_number[-4:],
        routing_last4=body.routing_number[-4:],
        balance=BANK_SANDBOX_BALANCE,
        linked_at=now_utc(),
    )
    try:
        create_document("bankaccount", account, db=db)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="A bank account is already linked")
    logger.info("Bank account ending %s linked for user %s", account.account_last4, user["id"])
    return {"success": True, "account": masked(db["bankaccount"].find_one({"user_id": user["id"]}))}


@bank_router.get("/account")
def get_account(user=Depends(get_current_user), db=Depends(get_db)):
    return {"success": True, "account": masked(get_account_or_404(db, user))}


@bank_router.put("/account")
def update_account(body: BankUpdateBody, user=Depends(get_current_user), db=Depends(get_db)):
    account = get_account_or_404(db, user)
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = now_utc()
    db["bankaccount"].update_one({"_id": account["_id"]}, {"$set": update})
    return {"success": True, "account": masked(db["bankaccount"].find_one({"_id": account["_id"]}))}


@bank_router.delete("/account")
def delete_account(user=Depends(get_current_user), db=Depends(get_db)):
    account = get_account_or_404(db, user)
    open_orders = db["order"].count_documents({
        "customer_id": user["id"],
        "payment_method.bank_account_id": str(account["_id"]),
        "is_paid": True,
        "status": {"$in": list(REFUNDABLE_STATUSES)},
    })
    if open_orders:
        raise HTTPException(
            status_code=400,
            detail="Cannot unlink a bank account while paid orders are still pending or processing",
        )
    db["bankaccount"].delete_one({"_id": account["_id"]})
    logger.info("Bank account %s unlinked for user %s", account["_id"], user["id"])
    return {"success": True, "message": "Bank account unlinked"}


# ----------------------- Payments -----------------------
@router.post("/create-payment-intent")
def create_payment_intent(body: PaymentIntentBody, user=Depends(get_current_user)):
    # card capture is not wired up; checkout charges the linked bank account instead
    return {
        "success": True,
        "message": "Payment intent endpoint - coming soon",
        "amount": body.amount,
        "currency": body.currency,
        "publishable_key": STRIPE_PUBLISHABLE_KEY or None,
    }


@router.post("/webhook")
def payment_webhook():
    return {"success": True, "message": "Payment webhook endpoint - coming soon"}
