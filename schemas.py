"""
Request Schemas for the Attar store

Each Pydantic model validates one request body before it reaches the
domain code. Stored documents use the same snake_case field names.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

CATEGORIES = ("Oud & Agarwood", "Rose & Florals", "Musk & Amber", "Spice & Oriental", "Gift Sets")


# Users

class UserRegister(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=6, description="Plain password, hashed before storage")
    phone: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = None
    avatar: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class AdminUserUpdate(BaseModel):
    role: Optional[Literal["user", "admin"]] = None
    is_active: Optional[bool] = None


# Catalog

class Size(BaseModel):
    volume: str = Field(..., min_length=1, description="e.g. 3ml, 6ml, 12ml")
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    sku: Optional[str] = None


class SizeEdit(BaseModel):
    """A size as edited by an admin; stock is changed separately."""
    volume: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    sku: Optional[str] = None


class StockAdjustment(BaseModel):
    volume: str = Field(..., min_length=1)
    change: int = Field(..., description="Units to add; negative to remove")

    @field_validator("change")
    @classmethod
    def not_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("change must not be zero")
        return value


class ProductImage(BaseModel):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    short_description: Optional[str] = Field(None, max_length=300)
    category: str
    origin: str = Field(..., min_length=1)
    sizes: List[Size] = Field(..., min_length=1)
    images: List[ProductImage] = []
    tags: List[str] = []
    badge: Optional[Literal["Bestseller", "New", "Rare", "Limited", "Sale"]] = None
    gender: Literal["Masculine", "Feminine", "Unisex"] = "Unisex"
    is_featured: bool = False

    @field_validator("category")
    @classmethod
    def known_category(cls, value: str) -> str:
        if value not in CATEGORIES:
            raise ValueError(f"category must be one of {', '.join(CATEGORIES)}")
        return value


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    short_description: Optional[str] = Field(None, max_length=300)
    category: Optional[str] = None
    origin: Optional[str] = None
    sizes: Optional[List[SizeEdit]] = Field(None, min_length=1)
    images: Optional[List[ProductImage]] = None
    tags: Optional[List[str]] = None
    badge: Optional[Literal["Bestseller", "New", "Rare", "Limited", "Sale"]] = None
    gender: Optional[Literal["Masculine", "Feminine", "Unisex"]] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("category")
    @classmethod
    def known_category(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in CATEGORIES:
            raise ValueError(f"category must be one of {', '.join(CATEGORIES)}")
        return value

    @field_validator("sizes")
    @classmethod
    def distinct_volumes(cls, value: Optional[List[SizeEdit]]) -> Optional[List[SizeEdit]]:
        if value is not None and len({size.volume for size in value}) != len(value):
            raise ValueError("each volume may appear only once")
        return value


# Cart and orders

class CartItem(BaseModel):
    product_id: str
    size: str
    quantity: int = Field(..., ge=1)


class CartValidateRequest(BaseModel):
    items: List[CartItem] = Field(..., min_length=1)
    coupon: Optional[str] = None


class CouponCheck(BaseModel):
    code: str = Field(..., min_length=1)


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)


class PaymentChoice(BaseModel):
    method: Literal["stripe", "cod", "bank_transfer"] = "stripe"


class OrderCreate(BaseModel):
    items: List[CartItem] = Field(..., min_length=1, description="Order must have at least one item")
    shipping_address: ShippingAddress
    payment: PaymentChoice = PaymentChoice()
    coupon: Optional[str] = Field(None, description="Coupon code")
    notes: Optional[str] = Field(None, max_length=500)
    is_gift: bool = False
    gift_message: Optional[str] = Field(None, max_length=300)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=300)


class Tracking(BaseModel):
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class StatusUpdate(BaseModel):
    status: Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
    message: Optional[str] = Field(None, max_length=300)
    tracking: Optional[Tracking] = None


# Reviews

class ReviewCreate(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=10, max_length=1000)

    @field_validator("title", "comment")
    @classmethod
    def strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    comment: Optional[str] = Field(None, min_length=10, max_length=1000)

    @field_validator("title", "comment")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


# Payments

class PaymentIntentRequest(BaseModel):
    order_id: str
