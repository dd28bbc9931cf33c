import re
from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, Field, PlainSerializer, field_validator

from .models import OrderStatus, PaymentStatus

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Decimal internally, plain JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def normalize_email(value: str) -> str:
    email = (value or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email format")
    return email


class ShippingAddress(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "India"


class LineItem(BaseModel):
    name: str
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)
    image_ref: Optional[str] = None
    description: Optional[str] = None
    product_ref: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_present(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Item name is required")
        return value


class OrderCreate(BaseModel):
    """Direct order creation by an internal caller, with its own total."""
    email: str
    items: List[LineItem] = Field(min_length=1)
    total_amount: Decimal = Field(ge=0)
    shipping_address: Optional[ShippingAddress] = None

    @field_validator("email")
    @classmethod
    def valid_email(cls, value: str) -> str:
        return normalize_email(value)


class OrderUpdate(BaseModel):
    """Administrative patch. Identity, items and total are not patchable."""
    order_status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    external_payment_ref: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None

    class Config:
        extra = "forbid"

    # Statuses can be changed but never cleared; the other fields accept null
    @field_validator("order_status", "payment_status")
    @classmethod
    def status_not_null(cls, value):
        if value is None:
            raise ValueError("Status cannot be cleared")
        return value


class OrderItemResponse(BaseModel):
    name: str
    unit_price: Money
    quantity: int
    image_ref: Optional[str]
    description: Optional[str]
    product_ref: Optional[str]

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: str
    customer_email: str
    items: List[OrderItemResponse]
    total_amount: Money
    payment_status: PaymentStatus
    order_status: OrderStatus
    external_session_id: Optional[str]
    external_payment_ref: Optional[str]
    shipping_address: Optional[ShippingAddress]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
