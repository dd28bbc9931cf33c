"""
Checkout orchestration: cart -> hosted payment session -> pending order.

The order is written only after the processor accepted the session. If the
write fails, the session stays valid and the verification path can rebuild
the order from the session metadata, which is why the cart is mirrored there.
"""
import json
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.exceptions import PaymentGatewayError, PersistenceError
from shared.observability import ecomm_checkout_duration_seconds, ecomm_checkout_total
from services.order_service.schemas import LineItem, ShippingAddress
from services.order_service.service import OrderService, compute_total
from services.payment_service.port import GatewayLineItem, PaymentGateway
from .schemas import CheckoutRequest, CheckoutResponse

logger = structlog.get_logger(__name__)

MINOR_UNITS_PER_UNIT = 100 # two-decimal currencies (INR paise, USD cents)
METADATA_VALUE_LIMIT = 500 # processor limit per metadata value


def to_minor_units(amount: Decimal) -> int:
    return int((amount * MINOR_UNITS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_line_items(items: Sequence[LineItem], currency: str) -> List[GatewayLineItem]:
    return [
        GatewayLineItem(
            name=item.name,
            unit_amount=to_minor_units(item.unit_price),
            quantity=item.quantity,
            currency=currency,
            description=item.description,
            image_ref=item.image_ref,
        )
        for item in items
    ]


def serialize_cart(items: Sequence[LineItem]) -> str:
    cart = []
    for item in items:
        entry = {"n": item.name, "p": str(item.unit_price), "q": item.quantity}
        if item.product_ref:
            entry["r"] = item.product_ref
        cart.append(entry)
    return json.dumps(cart, separators=(",", ":"))


def items_from_metadata(metadata: dict) -> Optional[List[LineItem]]:
    """Inverse of serialize_cart(); None when the cart is absent or unreadable."""
    raw = metadata.get("cart")
    if not raw:
        return None
    try:
        return [
            LineItem(name=entry["n"], unit_price=Decimal(entry["p"]), quantity=entry["q"], product_ref=entry.get("r"))
            for entry in json.loads(raw)
        ] or None
    except (ValueError, KeyError, TypeError, ArithmeticError):
        return None


def build_metadata(request: CheckoutRequest, total: Decimal) -> dict[str, str]:
    metadata = {
        "email": request.email,
        "cart": serialize_cart(request.items),
        "item_count": str(len(request.items)),
        "total_amount": str(total),
    }
    if request.shipping_address:
        metadata["shipping_address"] = request.shipping_address.model_dump_json()

    for key in [k for k, v in metadata.items() if len(v) > METADATA_VALUE_LIMIT]:
        logger.warning("checkout_metadata_dropped", key=key, length=len(metadata[key]))
        del metadata[key]
    return metadata


def shipping_from_metadata(metadata: dict) -> Optional[ShippingAddress]:
    raw = metadata.get("shipping_address")
    if not raw:
        return None
    try:
        return ShippingAddress.model_validate_json(raw)
    except ValueError:
        return None


class CheckoutOrchestrator:
    def __init__(self, gateway: PaymentGateway, client_url: str = None, currency: str = None):
        self.gateway = gateway
        self.client_url = client_url or settings.CLIENT_URL
        self.currency = currency or settings.CURRENCY

    @property
    def success_url(self) -> str:
        # {CHECKOUT_SESSION_ID} is filled in by the processor on redirect
        return f"{self.client_url}/success?session_id={{CHECKOUT_SESSION_ID}}"

    @property
    def cancel_url(self) -> str:
        return f"{self.client_url}/failure"

    async def checkout(self, db: AsyncSession, request: CheckoutRequest) -> CheckoutResponse:
        with ecomm_checkout_duration_seconds.time():
            total = compute_total(request.items)
            log = logger.bind(customer_email=request.email, item_count=len(request.items), total_amount=str(total))

            try:
                session = await self.gateway.create_session(
                    line_items=build_line_items(request.items, self.currency),
                    customer_email=request.email,
                    success_url=self.success_url,
                    cancel_url=self.cancel_url,
                    metadata=build_metadata(request, total),
                )
            except PaymentGatewayError:
                ecomm_checkout_total.labels(status="gateway_error").inc()
                log.error("checkout_session_failed")
                raise

            try:
                order = await OrderService.place_pending_order(
                    db,
                    email=request.email,
                    items=request.items,
                    total_amount=total,
                    shipping_address=request.shipping_address,
                    session_id=session.id,
                )
            except PersistenceError:
                ecomm_checkout_total.labels(status="persistence_error").inc()
                # Session is live without a local order; verification can rebuild it
                log.error("checkout_order_not_persisted", session_id=session.id)
                raise

        ecomm_checkout_total.labels(status="success").inc()
        log.info("checkout_created", session_id=session.id, order_id=order.id)
        return CheckoutResponse(session_id=session.id, redirect_url=session.url, order_id=order.id)
