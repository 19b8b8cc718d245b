from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Retainer bookings admitted by the quota evaluator
booking_admit_total = Counter(
    "booking_admit_total", "Total retainer sessions admitted"
)

# Rejections labelled by reason code (NO_ACTIVE_RETAINER, WEEKLY_LIMIT_REACHED, ...)
booking_reject_total = Counter(
    "booking_reject_total", "Total retainer sessions rejected", ["reason"]
)

# Version conflicts on the entitlement row; each one triggers a retry
entitlement_conflict_total = Counter(
    "entitlement_conflict_total", "Optimistic concurrency conflicts on entitlement rows"
)

_booking_buckets = (
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.0,
)

booking_latency_seconds = Histogram(
    "booking_latency_seconds", "Retainer booking transaction latency", buckets=_booking_buckets
)

# Webhook rejects (bad signature)
webhook_forbidden_total = Counter(
    "webhook_forbidden_total", "Total rejected webhook requests"
)

# Verified webhook events by Stripe type
webhook_events_total = Counter(
    "webhook_events_total", "Verified Stripe webhook events", ["type"]
)

# Events that were verified but not applied (duplicate, stale, unmatched)
webhook_dropped_total = Counter(
    "webhook_dropped_total", "Billing events dropped by the reconciler", ["reason"]
)

refund_total = Counter(
    "refund_total", "Total refunds issued for unused session time"
)

__all__ = [
    "booking_admit_total",
    "booking_reject_total",
    "entitlement_conflict_total",
    "booking_latency_seconds",
    "webhook_forbidden_total",
    "webhook_events_total",
    "webhook_dropped_total",
    "refund_total",
]
