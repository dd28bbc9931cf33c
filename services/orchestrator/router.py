from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.exceptions import PaymentGatewayError
from shared.security import checkout_rate_limit, limiter
from services.order_service.schemas import OrderResponse
from .checkout import CheckoutOrchestrator
from .dependencies import get_checkout_orchestrator, get_reconciliation_engine
from .reconciliation import ReconciliationEngine
from .schemas import CheckoutRequest, CheckoutResponse, SessionSummary, VerificationResponse, WebhookAck

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Checkout"])
public_router = APIRouter()  # For any public endpoints (e.g. health check)

@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "checkout", "status": "running"}


@router.post("/", response_model=CheckoutResponse)
@limiter.limit(checkout_rate_limit)
async def create_checkout(
    request: Request,                          # REQUIRED: slowapi needs this to check IP/Headers
    payload: CheckoutRequest,
    orchestrator: CheckoutOrchestrator = Depends(get_checkout_orchestrator),
    db: AsyncSession = Depends(get_db),
):
    return await orchestrator.checkout(db, payload)


# Signature verification runs over the exact bytes, so the body is read raw
@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    db: AsyncSession = Depends(get_db),
):
    payload = await request.body()
    return await engine.handle_webhook(db, payload, stripe_signature)


@router.get("/verify/{session_id}", response_model=VerificationResponse)
async def verify_payment(
    session_id: str,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await engine.verify_session(db, session_id)
    except PaymentGatewayError as e:
        logger.error("verify_payment_failed", session_id=session_id, error=e.message)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment verification failed, please contact support",
        ) from e

    return VerificationResponse(
        order=OrderResponse.model_validate(result.order),
        session=SessionSummary(
            id=result.session.id,
            payment_status=result.session.payment_status,
            customer_email=result.session.customer_email,
        ),
    )
