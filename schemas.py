"""
Database Schemas for the ArtisanMarket marketplace

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
"""
from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr

Role = Literal["customer", "vendor", "admin"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]
ShippingMethod = Literal["free", "standard", "express"]
ProductStatus = Literal["active", "inactive", "draft"]
VerificationStatus = Literal["pending", "verified", "rejected"]


class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password_hash: str = Field(..., description="bcrypt hash")
    role: Role = "customer"
    avatar: Optional[str] = None
    addresses: List[dict] = []
    is_active: bool = True


class Contact(BaseModel):
    email: EmailStr
    phone: Optional[str] = None
    website: Optional[str] = None
    social_media: dict = {}


class BusinessAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class Business(BaseModel):
    type: Optional[str] = None
    registration_number: Optional[str] = None
    tax_id: Optional[str] = None
    address: Optional[BusinessAddress] = None


class Verification(BaseModel):
    status: VerificationStatus = "pending"
    verified_at: Optional[datetime] = None


class Financials(BaseModel):
    commission_rate: float = Field(0.10, ge=0, le=1)
    balance: float = 0.0


class Vendor(BaseModel):
    user_id: str
    store_name: str = Field(..., min_length=2, max_length=100)
    slogan: Optional[str] = None
    store_description: str = ""
    logo: Optional[str] = None
    banner: Optional[str] = None
    contact: Contact
    business: Business = Business()
    specialties: List[str] = []
    verification: Verification = Verification()
    financials: Financials = Financials()
    is_active: bool = True


class Inventory(BaseModel):
    quantity: int = Field(0, ge=0)
    sku: Optional[str] = None
    track_quantity: bool = True


class Ratings(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = 0


class Product(BaseModel):
    vendor_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: float = Field(..., ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    categories: List[str] = []
    tags: List[str] = []
    images: List[str] = []
    inventory: Inventory = Inventory()
    status: ProductStatus = "active"
    featured: bool = False
    views: int = 0
    ratings: Ratings = Ratings()
    is_deleted: bool = False


class OrderItem(BaseModel):
    product_id: str
    title: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at the time of purchase")
    vendor_id: str


class ShippingAddress(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class PaymentMethodSummary(BaseModel):
    """Masked view of the account charged for an order. Raw numbers are never stored."""
    type: Literal["bank_account"] = "bank_account"
    bank_account_id: str
    bank_name: str
    account_last4: str


class Order(BaseModel):
    order_number: str
    customer_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethodSummary
    shipping_method: ShippingMethod = "standard"
    order_notes: Optional[str] = Field(None, max_length=500)
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(..., ge=0)
    tax: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    estimated_delivery: Optional[datetime] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    is_paid: bool = False
    payment_transaction_id: Optional[str] = None
    idempotency_key: str
    cancelled_at: Optional[datetime] = None
    status_history: List[dict] = []


class BankAccount(BaseModel):
    user_id: str
    account_holder: str
    bank_name: str
    account_type: Literal["checking", "savings"] = "checking"
    account_last4: str
    routing_last4: str
    balance: float = Field(0, ge=0)
    linked_at: Optional[datetime] = None


class DeliveryProof(BaseModel):
    order_id: str
    vendor_id: str
    image_url: str
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)
    uploaded_at: datetime
    upload_count: int = 1
