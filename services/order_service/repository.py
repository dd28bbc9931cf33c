from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import DuplicateOrderError, PersistenceError
from .models import Order, OrderStatus, PaymentStatus, utcnow


UNIQUE_VIOLATION = "23505"


def _is_unique_violation(error: IntegrityError) -> bool:
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate == UNIQUE_VIOLATION
    # SQLite carries no SQLSTATE, only its message
    return "unique constraint failed" in str(orig).lower()


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if _is_unique_violation(e):
            raise DuplicateOrderError("An order already exists for this payment session") from e
        raise PersistenceError(f"Order could not be saved: {e.orig}") from e
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Order store unavailable: {e}") from e


async def _apply_conditional(db: AsyncSession, stmt) -> bool:
    """Run a guarded UPDATE and report whether it matched exactly one row."""
    try:
        result = await db.execute(stmt)
        matched = result.rowcount == 1
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"Order store unavailable: {e}") from e
    await _commit(db)
    return matched


class OrderRepository:
    @staticmethod
    async def create_order(db: AsyncSession, order: Order) -> Order:
        db.add(order)
        await _commit(db)
        await db.refresh(order)
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
        result = await db.execute(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_by_session_id(db: AsyncSession, session_id: str) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.external_session_id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def list_by_email(db: AsyncSession, email: str) -> Sequence[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.customer_email == email)
            .order_by(Order.created_at.desc())
        )
        return result.scalars().all()

    @staticmethod
    async def complete_payment(db: AsyncSession, session_id: str, payment_ref: Optional[str]) -> bool:
        """
        pending -> completed as one conditional UPDATE.

        Returns True when this call performed the transition. A concurrent
        caller that lost the race (or an order already completed, failed or
        refunded) matches no row and gets False.
        """
        stmt = (
            update(Order)
            .where(Order.external_session_id == session_id)
            .where(Order.payment_status == PaymentStatus.PENDING.value)
            .values(
                payment_status=PaymentStatus.COMPLETED.value,
                order_status=OrderStatus.PROCESSING.value,
                external_payment_ref=payment_ref,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return await _apply_conditional(db, stmt)

    @staticmethod
    async def fail_payment(db: AsyncSession, session_id: str) -> bool:
        """pending -> failed; completed and other terminal states are left alone."""
        stmt = (
            update(Order)
            .where(Order.external_session_id == session_id)
            .where(Order.payment_status == PaymentStatus.PENDING.value)
            .values(payment_status=PaymentStatus.FAILED.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return await _apply_conditional(db, stmt)

    @staticmethod
    async def update_order(db: AsyncSession, order: Order, changes: dict) -> Order:
        for field, value in changes.items():
            setattr(order, field, value)
        await _commit(db)
        await db.refresh(order)
        return order
