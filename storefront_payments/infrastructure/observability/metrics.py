"""Prometheus metrics for payment intents, confirmations and gateway health"""

from prometheus_client import Counter, Histogram

# Intent metrics
intent_created_counter = Counter(
    "storefront_payment_intents_created_total",
    "Payment intents created",
    ["kind"],  # topup | purchase | demo_purchase
)

confirmation_counter = Counter(
    "storefront_payment_confirmations_total",
    "Confirmation attempts by path and outcome",
    ["source", "outcome"],  # webhook | poll ; credited | noop
)

cancellation_counter = Counter(
    "storefront_payment_cancellations_total",
    "Intents moved to CANCELED",
    ["gateway_status"],
)

delivery_credentials_counter = Counter(
    "storefront_delivery_credentials_issued_total",
    "Delivery credentials minted",
)

# Gateway metrics
gateway_latency_histogram = Histogram(
    "storefront_gateway_latency_seconds",
    "Payment gateway response time",
    ["operation"],  # create | status
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

gateway_failure_counter = Counter(
    "storefront_gateway_failures_total",
    "Failed payment gateway calls",
    ["operation"],
)

# Webhook metrics
webhook_rejection_counter = Counter(
    "storefront_webhook_rejections_total",
    "Rejected gateway webhooks",
    ["reason"],  # secret | malformed | error
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_confirmation(source: str, credited: bool) -> None:
    """Record confirmation outcome for race and retry analysis"""
    outcome = "credited" if credited else "noop"
    confirmation_counter.labels(source=source, outcome=outcome).inc()
