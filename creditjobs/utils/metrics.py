"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
jobs_submitted_total = Counter(
    "jobs_submitted_total",
    "Total number of jobs accepted by a provider",
    ["provider"],
)

jobs_settled_total = Counter(
    "jobs_settled_total",
    "Total number of settled jobs by terminal outcome",
    ["provider", "outcome"],  # succeeded, failed, timed_out
)

submission_failures_total = Counter(
    "submission_failures_total",
    "Total provider submission failures",
    ["provider"],
)

ledger_operations_total = Counter(
    "ledger_operations_total",
    "Total credit ledger operations",
    ["operation"],  # reserve, commit, refund, topup
)

insufficient_funds_total = Counter(
    "insufficient_funds_total",
    "Total reservations refused for insufficient funds",
)

orphaned_reservations_total = Counter(
    "orphaned_reservations_total",
    "Total orphaned reservations resolved by the sweep",
    ["cause"],
)

jobs_detached_total = Counter(
    "jobs_detached_total",
    "Total jobs handed to the background sweeper after caller cancellation",
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
job_duration_seconds = Histogram(
    "job_duration_seconds",
    "Wall-clock time from reservation to settlement",
    ["provider"],
    buckets=[5, 15, 30, 60, 120, 300, 600, 1200],
)

# Gauges
active_polls = Gauge(
    "active_polls",
    "Jobs currently being polled in-process",
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
