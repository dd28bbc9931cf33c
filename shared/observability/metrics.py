from prometheus_client import Counter, Histogram

# Business Metrics
ecomm_checkout_total = Counter(
    "ecomm_checkout_total",
    "Total checkouts processed",
    ["status"] # Labels: 'success', 'invalid', 'gateway_error', 'persistence_error'
)

ecomm_checkout_duration_seconds = Histogram(
    "ecomm_checkout_duration_seconds",
    "Checkout duration in seconds"
)

ecomm_reconciliation_total = Counter(
    "ecomm_reconciliation_total",
    "Payment reconciliation attempts",
    ["trigger", "outcome"] # trigger: 'webhook' | 'poll'; outcome: 'completed', 'noop', 'failed', 'recovered'
)

ecomm_webhook_events_total = Counter(
    "ecomm_webhook_events_total",
    "Verified webhook events received from the payment processor",
    ["event_type"]
)

ecomm_webhook_signature_failures_total = Counter(
    "ecomm_webhook_signature_failures_total",
    "Webhook deliveries rejected because of a missing or invalid signature"
)

ecomm_orphaned_sessions_total = Counter(
    "ecomm_orphaned_sessions_total",
    "Paid or pending payment sessions with no matching local order",
    ["source"] # Labels: 'webhook', 'poll'
)
