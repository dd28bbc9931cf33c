"""In-memory payment gateway for development and testing.

Simulates Stripe Checkout without network calls: sessions live in a dict,
the shopper "pays" through ``mark_paid()``, and webhook payloads are signed
with an HMAC of the raw body so signature checks behave like the real thing.
Select it with ``PAYMENT_GATEWAY=fake``.
"""

import hashlib
import hmac
import json
from dataclasses import replace
from typing import Optional
from uuid import uuid4

from shared.exceptions import InvalidInput, NotFound, PaymentGatewayError, SignatureError
from .port import (
    SESSION_COMPLETED,
    SESSION_EXPIRED,
    SESSION_OPEN,
    CheckoutSession,
    GatewayEvent,
    GatewayLineItem,
    PaymentGateway,
)


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self, webhook_secret: str = "whsec_fake") -> None:
        self.webhook_secret = webhook_secret
        self.should_succeed: bool = True
        self.failure_reason: str = "Payment processor unavailable"
        self.sessions: dict[str, CheckoutSession] = {}
        self.line_items: dict[str, list[GatewayLineItem]] = {}
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Payment processor unavailable") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def _check_available(self) -> None:
        if not self.should_succeed:
            raise PaymentGatewayError(self.failure_reason)

    async def create_session(
        self,
        line_items: list[GatewayLineItem],
        customer_email: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        self.calls.append(
            {
                "method": "create_session",
                "customer_email": customer_email,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": dict(metadata),
            }
        )
        self._check_available()

        session_id = f"cs_test_{uuid4().hex[:24]}"
        session = CheckoutSession(
            id=session_id,
            url=f"https://checkout.fake.test/pay/{session_id}",
            payment_status="unpaid",
            status=SESSION_OPEN,
            customer_email=customer_email,
            amount_total=sum(item.unit_amount * item.quantity for item in line_items),
            metadata=dict(metadata),
        )
        self.sessions[session_id] = session
        self.line_items[session_id] = list(line_items)
        return session

    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        self.calls.append({"method": "retrieve_session", "session_id": session_id})
        self._check_available()
        try:
            return self.sessions[session_id]
        except KeyError:
            raise NotFound("Payment session not found") from None

    async def find_session_id_for_payment(self, payment_ref: str) -> Optional[str]:
        self._check_available()
        for session in self.sessions.values():
            if session.payment_ref == payment_ref:
                return session.id
        return None

    def mark_paid(self, session_id: str, payment_ref: Optional[str] = None) -> CheckoutSession:
        """Simulate the shopper completing payment on the hosted page."""
        session = replace(
            self.sessions[session_id],
            payment_status="paid",
            status="complete",
            payment_ref=payment_ref or f"pi_fake_{uuid4().hex[:16]}",
        )
        self.sessions[session_id] = session
        return session

    def expire(self, session_id: str) -> CheckoutSession:
        """Simulate the hosted page timing out before the shopper paid."""
        session = replace(self.sessions[session_id], status=SESSION_EXPIRED)
        self.sessions[session_id] = session
        return session

    def sign(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()

    def event_payload(self, session_id: str, event_type: str = SESSION_COMPLETED) -> bytes:
        """Render a processor-shaped event body for a known session."""
        session = self.sessions[session_id]
        body = {
            "id": f"evt_{uuid4().hex[:24]}",
            "type": event_type,
            "data": {
                "object": {
                    "id": session.id,
                    "object": "checkout.session",
                    "url": session.url,
                    "payment_status": session.payment_status,
                    "status": session.status,
                    "customer_email": session.customer_email,
                    "payment_intent": session.payment_ref,
                    "amount_total": session.amount_total,
                    "metadata": session.metadata,
                }
            },
        }
        return json.dumps(body).encode()

    def verify_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        if not signature or not hmac.compare_digest(signature, self.sign(payload)):
            raise SignatureError("Invalid webhook signature")
        try:
            return GatewayEvent.from_payload(json.loads(payload))
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidInput("Malformed webhook payload") from e
