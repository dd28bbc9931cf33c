"""
Payment reconciliation.

Stripe tells us about a finished payment twice: the signed webhook, and the
shopper's browser coming back from the hosted page and asking us to verify
the session. Either can arrive first, both can arrive at once, and either can
be retried. Both funnel into ``complete_payment()``, whose store update is a
single conditional write, so exactly one of them performs the transition and
the other observes a no-op.
"""
from dataclasses import dataclass
from typing import Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.exceptions import DuplicateOrderError, InvalidInput, NotFound, SignatureError
from shared.observability import (
    ecomm_orphaned_sessions_total,
    ecomm_reconciliation_total,
    ecomm_webhook_events_total,
    ecomm_webhook_signature_failures_total,
)
from services.order_service.models import Order, PaymentStatus
from services.order_service.repository import OrderRepository
from services.order_service.schemas import normalize_email
from services.order_service.service import OrderService, compute_total
from services.payment_service.port import (
    PAYMENT_INTENT_FAILED,
    SESSION_ASYNC_PAYMENT_FAILED,
    SESSION_ASYNC_PAYMENT_SUCCEEDED,
    SESSION_COMPLETED,
    SESSION_OPEN,
    CheckoutSession,
    GatewayEvent,
    PaymentGateway,
)
from .checkout import items_from_metadata, shipping_from_metadata

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WebhookTrigger:
    event_id: str
    event_type: str
    source = "webhook"


@dataclass(frozen=True)
class PollTrigger:
    source = "poll"


Trigger = Union[WebhookTrigger, PollTrigger]


@dataclass
class VerificationResult:
    order: Order
    session: CheckoutSession


class ReconciliationEngine:
    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    # --- the single state transition ---

    async def complete_payment(
        self, db: AsyncSession, session_id: str, payment_ref: Optional[str], trigger: Trigger
    ) -> bool:
        """Mark the session's order paid. Safe to call any number of times."""
        transitioned = await OrderRepository.complete_payment(db, session_id, payment_ref)
        outcome = "completed" if transitioned else "noop"
        ecomm_reconciliation_total.labels(trigger=trigger.source, outcome=outcome).inc()
        logger.info(
            "payment_reconciled" if transitioned else "payment_reconcile_noop",
            session_id=session_id,
            payment_ref=payment_ref,
            trigger=trigger.source,
        )
        return transitioned

    async def fail_payment(self, db: AsyncSession, session_id: str, trigger: Trigger) -> bool:
        transitioned = await OrderRepository.fail_payment(db, session_id)
        ecomm_reconciliation_total.labels(
            trigger=trigger.source, outcome="failed" if transitioned else "noop"
        ).inc()
        if transitioned:
            logger.info("payment_marked_failed", session_id=session_id, trigger=trigger.source)
        else:
            # Completed or already terminal: a late failure must not overwrite it
            logger.info("payment_failure_ignored", session_id=session_id, trigger=trigger.source)
        return transitioned

    # --- webhook entry ---

    async def handle_webhook(self, db: AsyncSession, payload: bytes, signature: Optional[str]) -> dict:
        try:
            event = self.gateway.verify_event(payload, signature)
        except SignatureError:
            ecomm_webhook_signature_failures_total.inc()
            raise

        ecomm_webhook_events_total.labels(event_type=event.type).inc()
        trigger = WebhookTrigger(event_id=event.id, event_type=event.type)
        log = logger.bind(event_id=event.id, event_type=event.type)
        log.info("webhook_received")

        if event.type in (SESSION_COMPLETED, SESSION_ASYNC_PAYMENT_SUCCEEDED):
            await self._on_session_paid(db, event, trigger)
        elif event.type == SESSION_ASYNC_PAYMENT_FAILED:
            if event.session:
                await self._on_payment_failed(db, event.session.id, trigger)
        elif event.type == PAYMENT_INTENT_FAILED:
            await self._on_attempt_declined(db, event, trigger)
        else:
            log.info("webhook_event_ignored")

        return {"received": True}

    async def _on_session_paid(self, db: AsyncSession, event: GatewayEvent, trigger: WebhookTrigger) -> None:
        """
        Complete the order for a finished session.

        ``checkout.session.completed`` alone is not proof of payment: delayed
        methods (bank debits, vouchers) finish the session while it is still
        ``unpaid``. Those are acknowledged without a transition, and the order
        completes on ``async_payment_succeeded`` or on the next poll that sees
        the session paid.
        """
        session = event.session
        if session is None:
            logger.warning("webhook_missing_session", event_id=event.id, event_type=event.type)
            return
        if not session.is_paid:
            # Delayed payment methods complete the session before the money arrives
            logger.info("webhook_session_awaiting_payment", session_id=session.id, payment_status=session.payment_status)
            return

        order = await OrderRepository.get_by_session_id(db, session.id)
        if order is None:
            # Order write may still be in flight or have failed; polling recovers it
            ecomm_orphaned_sessions_total.labels(source="webhook").inc()
            logger.warning("webhook_order_not_found", session_id=session.id, event_id=event.id)
            return

        await self.complete_payment(db, session.id, session.payment_ref, trigger)

    async def _on_attempt_declined(self, db: AsyncSession, event: GatewayEvent, trigger: WebhookTrigger) -> None:
        """
        A declined card is one attempt, not the end of the session: the shopper
        can retry on the same hosted page. The order only fails once the live
        session can no longer be paid.
        """
        session_id = None
        if event.payment_ref:
            session_id = await self.gateway.find_session_id_for_payment(event.payment_ref)
        if not session_id:
            logger.info("webhook_payment_without_session", event_id=event.id, payment_ref=event.payment_ref)
            return

        session = await self.gateway.retrieve_session(session_id)
        if session.is_paid or session.status == SESSION_OPEN:
            logger.info(
                "payment_attempt_declined",
                session_id=session_id,
                payment_ref=event.payment_ref,
                session_status=session.status,
            )
            return

        await self._on_payment_failed(db, session_id, trigger)

    async def _on_payment_failed(self, db: AsyncSession, session_id: str, trigger: WebhookTrigger) -> None:
        order = await OrderRepository.get_by_session_id(db, session_id)
        if order is None:
            ecomm_orphaned_sessions_total.labels(source="webhook").inc()
            logger.warning("webhook_order_not_found", session_id=session_id, event_id=trigger.event_id)
            return
        await self.fail_payment(db, session_id, trigger)

    # --- client polling entry ---

    async def verify_session(self, db: AsyncSession, session_id: str) -> VerificationResult:
        """Read-or-reconcile: always re-fetches the live session from the processor."""
        session = await self.gateway.retrieve_session(session_id)

        order = await OrderRepository.get_by_session_id(db, session_id)
        if order is None:
            order = await self._recover_order(db, session)

        if session.is_paid and order.payment_status != PaymentStatus.COMPLETED.value:
            await self.complete_payment(db, session_id, session.payment_ref, PollTrigger())
            order = await OrderService.get_order_by_session(db, session_id)

        return VerificationResult(order=order, session=session)

    async def _recover_order(self, db: AsyncSession, session: CheckoutSession) -> Order:
        """Rebuild a missing order from the cart mirrored into session metadata."""
        items = items_from_metadata(session.metadata)
        try:
            email = normalize_email(session.metadata.get("email") or session.customer_email or "")
        except ValueError:
            email = None

        if not items or not email:
            ecomm_orphaned_sessions_total.labels(source="poll").inc()
            logger.error("verify_order_not_found", session_id=session.id)
            raise NotFound("Order not found for this payment session")

        try:
            order = await OrderService.place_pending_order(
                db,
                email=email,
                items=items,
                total_amount=compute_total(items),
                shipping_address=shipping_from_metadata(session.metadata),
                session_id=session.id,
            )
        except DuplicateOrderError:
            # A concurrent request inserted it first
            return await OrderService.get_order_by_session(db, session.id)
        except InvalidInput as e:
            ecomm_orphaned_sessions_total.labels(source="poll").inc()
            logger.error("verify_order_unrecoverable", session_id=session.id, reason=e.message)
            raise NotFound("Order not found for this payment session") from e

        ecomm_reconciliation_total.labels(trigger=PollTrigger.source, outcome="recovered").inc()
        logger.warning("order_recovered_from_session", session_id=session.id, order_id=order.id)
        return order
