import asyncio
import json
from dataclasses import replace
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY

from shared.exceptions import NotFound, PaymentGatewayError, SignatureError
from services.order_service.models import OrderStatus, PaymentStatus
from services.order_service.service import OrderService
from services.orchestrator.checkout import build_metadata
from services.orchestrator.reconciliation import PollTrigger, WebhookTrigger
from services.orchestrator.schemas import CheckoutRequest
from services.payment_service.port import (
    PAYMENT_INTENT_FAILED,
    SESSION_ASYNC_PAYMENT_FAILED,
    SESSION_ASYNC_PAYMENT_SUCCEEDED,
)

pytestmark = pytest.mark.anyio


def cart():
    return CheckoutRequest.model_validate(
        {"email": "a@b.com", "items": [{"name": "Mug", "unit_price": 499, "quantity": 2}]}
    )


async def checked_out(db, orchestrator):
    response = await orchestrator.checkout(db, cart())
    return response.session_id


def completed_count():
    return sum(
        REGISTRY.get_sample_value("ecomm_reconciliation_total", {"trigger": trigger, "outcome": "completed"}) or 0
        for trigger in ("webhook", "poll")
    )


async def decline(db, reconciler, gateway, payment_ref):
    payload = json.dumps(
        {
            "id": f"evt_{payment_ref}",
            "type": PAYMENT_INTENT_FAILED,
            "data": {"object": {"id": payment_ref, "object": "payment_intent"}},
        }
    ).encode()
    return await reconciler.handle_webhook(db, payload, gateway.sign(payload))


async def deliver(db, reconciler, gateway, session_id, event_type=None):
    payload = gateway.event_payload(session_id, event_type) if event_type else gateway.event_payload(session_id)
    return await reconciler.handle_webhook(db, payload, gateway.sign(payload))


class TestWebhook:
    async def test_paid_session_completes_order(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.mark_paid(session_id, payment_ref="pi_123")

        assert await deliver(db, reconciler, gateway, session_id) == {"received": True}

        order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert order.order_status == OrderStatus.PROCESSING.value
        assert order.external_payment_ref == "pi_123"

    async def test_redelivery_is_idempotent(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.mark_paid(session_id, payment_ref="pi_123")

        await deliver(db, reconciler, gateway, session_id)
        first = await OrderService.get_order_by_session(db, session_id)
        first_state = (first.payment_status, first.order_status, first.external_payment_ref, first.updated_at)

        await deliver(db, reconciler, gateway, session_id)
        second = await OrderService.get_order_by_session(db, session_id)
        assert (second.payment_status, second.order_status, second.external_payment_ref, second.updated_at) == first_state

    async def test_async_payment_succeeded_completes_order(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.mark_paid(session_id)

        await deliver(db, reconciler, gateway, session_id, SESSION_ASYNC_PAYMENT_SUCCEEDED)

        order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.COMPLETED.value

    async def test_unpaid_completed_session_waits(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)

        await deliver(db, reconciler, gateway, session_id)

        order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.PENDING.value

    async def test_bad_signature_is_rejected_without_state_change(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.mark_paid(session_id)
        payload = gateway.event_payload(session_id)
        before = REGISTRY.get_sample_value("ecomm_webhook_signature_failures_total") or 0

        with pytest.raises(SignatureError):
            await reconciler.handle_webhook(db, payload, "t=1,v1=deadbeef")
        with pytest.raises(SignatureError):
            await reconciler.handle_webhook(db, payload, None)

        order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.PENDING.value
        assert REGISTRY.get_sample_value("ecomm_webhook_signature_failures_total") == before + 2

    async def test_unknown_session_is_acknowledged(self, db, reconciler, gateway):
        session = await gateway.create_session([], "a@b.com", "http://s", "http://c", {})
        gateway.mark_paid(session.id)

        assert await deliver(db, reconciler, gateway, session.id) == {"received": True}

    async def test_unhandled_event_type_is_acknowledged(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.mark_paid(session_id)

        assert await deliver(db, reconciler, gateway, session_id, "customer.created") == {"received": True}

        order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.PENDING.value

    async def test_async_payment_failure_marks_order_failed(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)

        await deliver(db, reconciler, gateway, session_id, SESSION_ASYNC_PAYMENT_FAILED)

        order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.FAILED.value

    async def test_late_failure_does_not_undo_completion(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.mark_paid(session_id)
        await deliver(db, reconciler, gateway, session_id)

        await deliver(db, reconciler, gateway, session_id, SESSION_ASYNC_PAYMENT_FAILED)

        order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.COMPLETED.value

    async def test_declined_attempt_leaves_open_session_pending(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.sessions[session_id] = replace(gateway.sessions[session_id], payment_ref="pi_declined")

        await decline(db, reconciler, gateway, "pi_declined")

        order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.PENDING.value

    async def test_retry_after_decline_completes_order(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.sessions[session_id] = replace(gateway.sessions[session_id], payment_ref="pi_retry")
        await decline(db, reconciler, gateway, "pi_retry")

        gateway.mark_paid(session_id, payment_ref="pi_retry")
        await deliver(db, reconciler, gateway, session_id)
        result = await reconciler.verify_session(db, session_id)

        assert result.session.is_paid
        assert result.order.payment_status == PaymentStatus.COMPLETED.value
        assert result.order.order_status == OrderStatus.PROCESSING.value
        assert result.order.external_payment_ref == "pi_retry"

    async def test_decline_on_expired_session_fails_order(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.sessions[session_id] = replace(gateway.sessions[session_id], payment_ref="pi_declined")
        gateway.expire(session_id)

        await decline(db, reconciler, gateway, "pi_declined")

        order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.FAILED.value

    async def test_decline_without_session_is_acknowledged(self, db, reconciler, gateway):
        assert await decline(db, reconciler, gateway, "pi_orphan") == {"received": True}


class TestVerifySession:
    async def test_poll_completes_before_webhook(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.mark_paid(session_id, payment_ref="pi_poll")

        result = await reconciler.verify_session(db, session_id)

        assert result.order.payment_status == PaymentStatus.COMPLETED.value
        assert result.order.external_payment_ref == "pi_poll"
        assert result.session.is_paid

        # The webhook arriving afterwards changes nothing
        await deliver(db, reconciler, gateway, session_id)
        order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert order.external_payment_ref == "pi_poll"

    async def test_poll_after_webhook_is_read_only(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.mark_paid(session_id, payment_ref="pi_hook")
        await deliver(db, reconciler, gateway, session_id)

        result = await reconciler.verify_session(db, session_id)

        assert result.order.payment_status == PaymentStatus.COMPLETED.value
        assert result.order.order_status == OrderStatus.PROCESSING.value

    async def test_unpaid_session_stays_pending(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)

        result = await reconciler.verify_session(db, session_id)

        assert result.order.payment_status == PaymentStatus.PENDING.value
        assert not result.session.is_paid

    async def test_unknown_session(self, db, reconciler):
        with pytest.raises(NotFound):
            await reconciler.verify_session(db, "cs_unknown")

    async def test_gateway_outage(self, db, orchestrator, reconciler, gateway):
        session_id = await checked_out(db, orchestrator)
        gateway.configure(should_succeed=False)

        with pytest.raises(PaymentGatewayError):
            await reconciler.verify_session(db, session_id)

    async def test_missing_order_is_rebuilt_from_session(self, db, reconciler, gateway):
        request = cart()
        session = await gateway.create_session(
            [], request.email, "http://s", "http://c", build_metadata(request, Decimal("998"))
        )
        gateway.mark_paid(session.id, payment_ref="pi_lost")

        result = await reconciler.verify_session(db, session.id)

        order = result.order
        assert order.customer_email == "a@b.com"
        assert order.total_amount == Decimal("998")
        assert [(item.name, item.quantity) for item in order.items] == [("Mug", 2)]
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert order.external_payment_ref == "pi_lost"

    async def test_missing_order_without_cart_is_not_found(self, db, reconciler, gateway):
        session = await gateway.create_session([], "a@b.com", "http://s", "http://c", {"email": "a@b.com"})
        gateway.mark_paid(session.id)

        with pytest.raises(NotFound):
            await reconciler.verify_session(db, session.id)


class TestCompletePayment:
    async def test_exactly_one_trigger_wins(self, db, orchestrator, reconciler):
        session_id = await checked_out(db, orchestrator)

        outcomes = [
            await reconciler.complete_payment(db, session_id, "pi_1", WebhookTrigger(event_id="evt_1", event_type="x")),
            await reconciler.complete_payment(db, session_id, "pi_1", PollTrigger()),
            await reconciler.complete_payment(db, session_id, "pi_1", WebhookTrigger(event_id="evt_1", event_type="x")),
        ]

        assert outcomes == [True, False, False]

    async def test_concurrent_webhook_and_poll_transition_once(
        self, session_factory, orchestrator, reconciler, gateway
    ):
        async with session_factory() as db:
            session_id = await checked_out(db, orchestrator)
        gateway.mark_paid(session_id, payment_ref="pi_race")
        before = completed_count()

        async def webhook():
            async with session_factory() as db:
                await deliver(db, reconciler, gateway, session_id)

        async def poll():
            async with session_factory() as db:
                await reconciler.verify_session(db, session_id)

        await asyncio.gather(webhook(), poll(), webhook(), poll())

        assert completed_count() == before + 1
        async with session_factory() as db:
            order = await OrderService.get_order_by_session(db, session_id)
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert order.order_status == OrderStatus.PROCESSING.value
        assert order.external_payment_ref == "pi_race"
