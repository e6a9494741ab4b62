"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
jobs_submitted_total = Counter(
    "jobs_submitted_total",
    "Total submit requests by outcome",
    ["media_kind", "outcome"],  # created, replayed, in_flight, rejected
)

jobs_completed_total = Counter(
    "jobs_completed_total",
    "Total jobs that reached completed",
    ["media_kind", "provider"],
)

jobs_failed_total = Counter(
    "jobs_failed_total",
    "Total jobs that reached failed",
    ["media_kind", "reason"],
)

ledger_operations_total = Counter(
    "ledger_operations_total",
    "Total credit ledger operations",
    ["operation"],  # reserve, replay, complete, refund
)

balance_rejected_total = Counter(
    "balance_rejected_total",
    "Total reservations refused for insufficient credits",
)

provider_attempts_total = Counter(
    "provider_attempts_total",
    "Provider attempts inside the cascade",
    ["provider", "outcome"],  # success, failure
)

sweep_actions_total = Counter(
    "sweep_actions_total",
    "Rows touched by the safety-net sweeps",
    ["sweep"],  # stuck_jobs, stale_reservations
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
provider_attempt_duration_seconds = Histogram(
    "provider_attempt_duration_seconds",
    "Duration of one provider attempt including re-hosting",
    ["provider"],
    buckets=[1, 5, 10, 30, 60, 120, 300],
)

job_duration_seconds = Histogram(
    "job_duration_seconds",
    "Job execution duration from processing to terminal",
    ["media_kind"],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600],
)

# Gauges
active_jobs = Gauge(
    "active_jobs",
    "Jobs currently executing in this process",
)


router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
