"""Payment gateway factory.

``build_gateway()`` is called once at application startup; the result is
stored on the app state and handed to request handlers through the
``get_gateway`` dependency.
"""

import structlog

from shared.config import settings
from .fake_adapter import FakeGateway
from .port import PaymentGateway
from .stripe_adapter import StripeGateway

logger = structlog.get_logger(__name__)


def build_gateway() -> PaymentGateway:
    if settings.PAYMENT_GATEWAY == "fake":
        logger.warning("payment_gateway_fake", reason="PAYMENT_GATEWAY=fake, no real payments will be taken")
        return FakeGateway(webhook_secret=settings.STRIPE_WEBHOOK_SECRET or "whsec_fake")

    if not settings.STRIPE_SECRET_KEY:
        logger.warning("stripe_secret_key_missing", detail="payment features will fail until STRIPE_SECRET_KEY is set")
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("stripe_webhook_secret_missing", detail="all webhook deliveries will be rejected")

    return StripeGateway(
        api_key=settings.STRIPE_SECRET_KEY or "sk_test_placeholder_key",
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
    )
