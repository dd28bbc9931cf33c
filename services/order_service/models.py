import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String
from sqlalchemy.orm import relationship

from shared.config.database import Base


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"
    # We use a separate schema to simulate microservice isolation
    __table_args__ = (
        # Sparse uniqueness: NULLs never collide, so orders without a session are fine
        Index("ix_orders_external_session_id", "external_session_id", unique=True),
        Index("ix_orders_customer_email_created_at", "customer_email", "created_at"),
        {"schema": "order_schema"},
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_email = Column(String(255), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False) # calculated at creation
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    order_status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    external_session_id = Column(String(255), nullable=True)
    external_payment_ref = Column(String(255), nullable=True)
    shipping_address = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("order_schema.orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(255), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    image_ref = Column(String(1024), nullable=True)
    description = Column(String(2048), nullable=True)
    product_ref = Column(String(64), nullable=True) # catalog entry id, not enforced across schemas

    order = relationship("Order", back_populates="items")
