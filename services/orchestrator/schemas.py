from typing import List, Optional

from pydantic import BaseModel, field_validator

from services.order_service.schemas import LineItem, OrderResponse, ShippingAddress, normalize_email


class CheckoutRequest(BaseModel):
    # Any client-side total is ignored; the server computes its own
    email: str
    items: List[LineItem]
    shipping_address: Optional[ShippingAddress] = None

    @field_validator("email")
    @classmethod
    def valid_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator("items")
    @classmethod
    def cart_not_empty(cls, items: List[LineItem]) -> List[LineItem]:
        if not items:
            raise ValueError("Cart is empty")
        return items


class CheckoutResponse(BaseModel):
    session_id: str
    redirect_url: Optional[str]
    order_id: str


class SessionSummary(BaseModel):
    id: str
    payment_status: str
    customer_email: Optional[str]


class VerificationResponse(BaseModel):
    order: OrderResponse
    session: SessionSummary


class WebhookAck(BaseModel):
    received: bool = True
