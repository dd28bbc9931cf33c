from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import InvalidInput, NotFound
from .models import Order, OrderItem, OrderStatus, PaymentStatus
from .repository import OrderRepository
from .schemas import LineItem, OrderCreate, OrderUpdate, ShippingAddress, normalize_email

logger = structlog.get_logger(__name__)

# Client-supplied totals may differ from the line-item sum by at most this much
TOTAL_TOLERANCE = Decimal("1")


def compute_total(items: Iterable[LineItem]) -> Decimal:
    return sum((item.unit_price * item.quantity for item in items), Decimal("0"))


def _order_items(items: Sequence[LineItem]) -> List[OrderItem]:
    return [
        OrderItem(
            position=position,
            name=item.name,
            unit_price=item.unit_price,
            quantity=item.quantity,
            image_ref=item.image_ref,
            description=item.description,
            product_ref=item.product_ref,
        )
        for position, item in enumerate(items)
    ]


class OrderService:
    @staticmethod
    async def place_pending_order(
        db: AsyncSession,
        email: str,
        items: Sequence[LineItem],
        total_amount: Decimal,
        shipping_address: Optional[ShippingAddress] = None,
        session_id: Optional[str] = None,
    ) -> Order:
        if not items:
            raise InvalidInput("Order must contain at least one item")
        if abs(total_amount - compute_total(items)) > TOTAL_TOLERANCE:
            raise InvalidInput("Total amount does not match the order items")

        order = Order(
            customer_email=email,
            items=_order_items(items),
            total_amount=total_amount,
            payment_status=PaymentStatus.PENDING.value,
            order_status=OrderStatus.PENDING.value,
            external_session_id=session_id,
            shipping_address=shipping_address.model_dump() if shipping_address else None,
        )
        return await OrderRepository.create_order(db, order)

    @staticmethod
    async def create_order(db: AsyncSession, data: OrderCreate) -> Order:
        order = await OrderService.place_pending_order(
            db,
            email=data.email,
            items=data.items,
            total_amount=data.total_amount,
            shipping_address=data.shipping_address,
        )
        logger.info("order_created", order_id=order.id, source="direct")
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Order:
        order = await OrderRepository.get_order(db, order_id)
        if not order:
            raise NotFound("Order not found")
        return order

    @staticmethod
    async def get_order_by_session(db: AsyncSession, session_id: str) -> Order:
        order = await OrderRepository.get_by_session_id(db, session_id)
        if not order:
            raise NotFound("Order not found")
        return order

    @staticmethod
    async def list_orders_for_customer(db: AsyncSession, email: Optional[str]) -> Sequence[Order]:
        if not email:
            raise InvalidInput("Email is required")
        try:
            email = normalize_email(email)
        except ValueError as e:
            raise InvalidInput(str(e)) from e
        return await OrderRepository.list_by_email(db, email)

    @staticmethod
    async def update_order(db: AsyncSession, order_id: str, patch: OrderUpdate) -> Order:
        order = await OrderService.get_order(db, order_id)
        changes = patch.model_dump(exclude_unset=True, mode="json")
        if not changes:
            return order

        updated = await OrderRepository.update_order(db, order, changes)
        logger.info("order_updated", order_id=order_id, fields=sorted(changes))
        return updated
