"""Stripe Checkout adapter.

Uses an explicitly constructed ``stripe.StripeClient`` (no module-level
``stripe.api_key``) with the SDK's httpx transport, so calls are awaited
natively and show up in httpx tracing. Every network call is bounded by
``timeout_seconds`` and never retried inside the request; Stripe's own
webhook retries and the shopper's next poll provide the retry.
"""

import asyncio
import json
from typing import Any, Optional

import stripe
import structlog

from shared.exceptions import InvalidInput, NotFound, PaymentGatewayError, SignatureError
from .port import CheckoutSession, GatewayEvent, GatewayLineItem, PaymentGateway

logger = structlog.get_logger(__name__)

WEBHOOK_TOLERANCE_SECONDS = 300


def _session_from_stripe(obj: Any) -> CheckoutSession:
    payment_intent = getattr(obj, "payment_intent", None)
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = payment_intent.id  # expanded object
    details = getattr(obj, "customer_details", None)
    metadata = getattr(obj, "metadata", None)
    return CheckoutSession(
        id=obj.id,
        url=getattr(obj, "url", None),
        payment_status=getattr(obj, "payment_status", None) or "unpaid",
        status=getattr(obj, "status", None),
        customer_email=getattr(obj, "customer_email", None) or getattr(details, "email", None),
        payment_ref=payment_intent,
        amount_total=getattr(obj, "amount_total", None),
        metadata={key: metadata[key] for key in metadata.keys()} if metadata else {},
    )


def _stripe_line_item(item: GatewayLineItem) -> dict:
    product_data: dict[str, Any] = {"name": item.name}
    if item.description:
        product_data["description"] = item.description
    if item.image_ref:
        product_data["images"] = [item.image_ref]
    return {
        "price_data": {
            "currency": item.currency,
            "product_data": product_data,
            "unit_amount": item.unit_amount,
        },
        "quantity": item.quantity,
    }


class StripeGateway(PaymentGateway):
    """Production gateway backed by Stripe Checkout Sessions."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout_seconds: float = 10.0,
        client: Optional[stripe.StripeClient] = None,
    ) -> None:
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        self._client = client or stripe.StripeClient(
            api_key,
            max_network_retries=0,
            http_client=stripe.HTTPXClient(timeout=timeout_seconds),
        )

    async def _call(self, operation: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.error("stripe_call_timeout", operation=operation, timeout=self.timeout_seconds)
            raise PaymentGatewayError(f"Payment processor timed out during {operation}") from e

    async def create_session(
        self,
        line_items: list[GatewayLineItem],
        customer_email: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [_stripe_line_item(item) for item in line_items],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "metadata": metadata,
        }
        try:
            session = await self._call(
                "create_session",
                self._client.checkout.sessions.create_async(params=params),
            )
        except stripe.StripeError as e:
            logger.error("stripe_create_session_failed", error=str(e), error_type=type(e).__name__)
            raise PaymentGatewayError(f"Payment processor rejected the checkout: {e.user_message or e}") from e
        return _session_from_stripe(session)

    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        try:
            session = await self._call(
                "retrieve_session",
                self._client.checkout.sessions.retrieve_async(session_id),
            )
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing" or e.http_status == 404:
                raise NotFound("Payment session not found") from e
            raise PaymentGatewayError(f"Payment processor rejected the lookup: {e}") from e
        except stripe.StripeError as e:
            logger.error("stripe_retrieve_session_failed", session_id=session_id, error=str(e))
            raise PaymentGatewayError("Payment processor unavailable") from e
        return _session_from_stripe(session)

    async def find_session_id_for_payment(self, payment_ref: str) -> Optional[str]:
        try:
            sessions = await self._call(
                "find_session",
                self._client.checkout.sessions.list_async(
                    params={"payment_intent": payment_ref, "limit": 1}
                ),
            )
        except stripe.StripeError as e:
            logger.error("stripe_list_sessions_failed", payment_ref=payment_ref, error=str(e))
            raise PaymentGatewayError("Payment processor unavailable") from e
        return sessions.data[0].id if sessions.data else None

    def verify_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        if not self.webhook_secret:
            raise SignatureError("Webhook secret is not configured")
        if not signature:
            raise SignatureError("Missing stripe-signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.webhook_secret,
                tolerance=WEBHOOK_TOLERANCE_SECONDS,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            raise SignatureError("Invalid webhook signature") from e

        try:
            return GatewayEvent.from_payload(json.loads(payload))
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidInput("Malformed webhook payload") from e
