from fastapi import Depends, Request

from shared.exceptions import PaymentGatewayError
from services.payment_service.port import PaymentGateway
from .checkout import CheckoutOrchestrator
from .reconciliation import ReconciliationEngine


def get_gateway(request: Request) -> PaymentGateway:
    """The gateway built at startup and stored on the app state."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise PaymentGatewayError("Payment gateway is not configured")
    return gateway

def get_checkout_orchestrator(gateway: PaymentGateway = Depends(get_gateway)) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(gateway)

def get_reconciliation_engine(gateway: PaymentGateway = Depends(get_gateway)) -> ReconciliationEngine:
    return ReconciliationEngine(gateway)
