from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.security.dependencies import Caller, get_caller, require_admin, verify_internal_api_key
from .models import Order
from .schemas import OrderCreate, OrderResponse, OrderUpdate
from .service import OrderService

# Shopper-facing reads need a bearer token; callers only see their own orders
router = APIRouter(tags=["Orders"])
public_router = APIRouter()  # For any public endpoints (e.g. health check)


def _ensure_visible(order: Order, caller: Caller) -> Order:
    if not caller.can_access(order.customer_email):
        # Same answer as a missing order so ids can't be probed
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "order", "status": "running"}


@router.get("/", response_model=List[OrderResponse])
async def list_orders(
    email: Optional[str] = Query(default=None),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    if email and not caller.can_access(email.strip().lower()):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to list these orders")
    return await OrderService.list_orders_for_customer(db, email)


@router.post(
    "/",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_internal_api_key)],
)
async def create_order(order: OrderCreate, db: AsyncSession = Depends(get_db)):
    return await OrderService.create_order(db, order)


@router.get("/session/{session_id}", response_model=OrderResponse)
async def get_order_by_session(
    session_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    order = await OrderService.get_order_by_session(db, session_id)
    return _ensure_visible(order, caller)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    order = await OrderService.get_order(db, order_id)
    return _ensure_visible(order, caller)


@router.patch("/{order_id}", response_model=OrderResponse, dependencies=[Depends(require_admin)])
async def update_order(order_id: str, patch: OrderUpdate, db: AsyncSession = Depends(get_db)):
    return await OrderService.update_order(db, order_id, patch)
