"""
Prometheus-based metrics for the escrow engine.
Exposed by whichever process embeds the engine (API layer, Celery worker).
"""
from prometheus_client import Counter, Histogram


# Counters
ledger_operations_total = Counter(
    "ledger_operations_total",
    "Total wallet ledger operations",
    ["operation"],  # pending, released, refund, debit
)

ledger_rejections_total = Counter(
    "ledger_rejections_total",
    "Total ledger operations refused by a balance or state guard",
    ["operation", "reason"],
)

payments_released_total = Counter(
    "payments_released_total",
    "Total booking payments moved from pending to available",
    ["trigger"],  # scheduler, manual, dispute
)

release_failures_total = Counter(
    "release_failures_total",
    "Total failed booking releases in scheduler runs",
    ["reason"],
)

compliance_blocks_total = Counter(
    "compliance_blocks_total",
    "Total acceptances refused by the monthly work-day cap",
)

booking_transitions_total = Counter(
    "booking_transitions_total",
    "Total booking status transitions",
    ["new_status"],
)

disputes_total = Counter(
    "disputes_total",
    "Total dispute lifecycle events",
    ["action"],  # raised, release, cancel, reject
)

# Histograms
release_batch_duration_seconds = Histogram(
    "release_batch_duration_seconds",
    "Release scheduler run duration",
    buckets=[0.1, 0.5, 1, 5, 15, 60, 300],
)
