from .setup import setup_observability
from .metrics import (
    ecomm_checkout_total,
    ecomm_checkout_duration_seconds,
    ecomm_reconciliation_total,
    ecomm_webhook_events_total,
    ecomm_webhook_signature_failures_total,
    ecomm_orphaned_sessions_total,
)
