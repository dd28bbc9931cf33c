"""Payment session gateway port.

The contract the checkout and reconciliation code depends on. Adapters
(Stripe in production, an in-memory fake for development and tests) turn the
processor's objects into the small frozen types below, so nothing outside
this package touches processor SDK objects.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

# Processor event types the reconciliation engine reacts to
SESSION_COMPLETED = "checkout.session.completed"
SESSION_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
SESSION_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"

PAID_STATUSES = frozenset({"paid", "no_payment_required"})

# Session lifecycle: open -> complete | expired
SESSION_OPEN = "open"
SESSION_EXPIRED = "expired"


@dataclass(frozen=True)
class GatewayLineItem:
    """One cart line in processor terms: integer minor units."""

    name: str
    unit_amount: int
    quantity: int
    currency: str
    description: Optional[str] = None
    image_ref: Optional[str] = None


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: Optional[str] = None
    payment_status: str = "unpaid"
    status: Optional[str] = None
    customer_email: Optional[str] = None
    payment_ref: Optional[str] = None
    amount_total: Optional[int] = None
    metadata: dict = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status in PAID_STATUSES

    @classmethod
    def from_payload(cls, obj: dict) -> "CheckoutSession":
        """Build from a processor session object (already decoded JSON)."""
        payment_intent = obj.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")
        customer_details = obj.get("customer_details") or {}
        return cls(
            id=obj["id"],
            url=obj.get("url"),
            payment_status=obj.get("payment_status") or "unpaid",
            status=obj.get("status"),
            customer_email=obj.get("customer_email") or customer_details.get("email"),
            payment_ref=payment_intent,
            amount_total=obj.get("amount_total"),
            metadata=dict(obj.get("metadata") or {}),
        )


@dataclass(frozen=True)
class GatewayEvent:
    """A verified webhook event."""

    id: str
    type: str
    session: Optional[CheckoutSession] = None
    payment_ref: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "GatewayEvent":
        obj = (payload.get("data") or {}).get("object") or {}
        session = None
        payment_ref = None
        if obj.get("object") == "checkout.session":
            session = CheckoutSession.from_payload(obj)
            payment_ref = session.payment_ref
        elif obj.get("object") == "payment_intent":
            payment_ref = obj.get("id")
        return cls(
            id=payload.get("id", "unknown"),
            type=payload.get("type", "unknown"),
            session=session,
            payment_ref=payment_ref,
        )


class PaymentGateway(ABC):
    """Abstract payment session gateway.

    Network-bound methods are coroutines and must raise
    ``PaymentGatewayError`` on outages, rejections and timeouts, and
    ``NotFound`` when the processor does not know a session.
    """

    @abstractmethod
    async def create_session(
        self,
        line_items: list[GatewayLineItem],
        customer_email: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        """Create a hosted payment session."""
        ...

    @abstractmethod
    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        """Fetch the live state of a session."""
        ...

    @abstractmethod
    async def find_session_id_for_payment(self, payment_ref: str) -> Optional[str]:
        """Resolve the session that owns a payment reference, if any."""
        ...

    @abstractmethod
    def verify_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        """Check the signature over the exact payload bytes and decode the event.

        Raises ``SignatureError`` when the signature is missing or invalid.
        """
        ...
