"""Prometheus counters exposed at /admin/metrics."""

from prometheus_client import Counter

webhook_events_total = Counter(
    "ledger_webhook_events_total",
    "Webhook deliveries by event type and outcome",
    ["event_type", "outcome"],  # processed, duplicate, ignored, deferred, failed, rejected
)

checkout_requests_total = Counter(
    "ledger_checkout_requests_total",
    "Checkout attempts by outcome",
    ["outcome"],
)

notifications_total = Counter(
    "ledger_notifications_total",
    "Notification sends by channel and outcome",
    ["channel", "outcome"],
)

payments_failed_total = Counter(
    "ledger_payments_failed_total",
    "payment_intent.payment_failed events",
    ["decline_code"],
)
