"""Prometheus metrics for webhook ingestion observability.

Counters and histograms at each pipeline stage.
Exposed via /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, make_asgi_app

# Pipeline counters
webhook_events_total = Counter(
    "webhook_events_total",
    "Total webhook deliveries by event domain, action and outcome",
    ["domain", "action", "outcome"],  # outcome: accepted, unauthenticated, misconfigured, malformed
)

token_refresh_total = Counter(
    "token_refresh_total",
    "Total OAuth token refresh attempts",
    ["status"],  # status: refreshed, failed
)

sleep_fetch_total = Counter(
    "sleep_fetch_total",
    "Total sleep resource fetches",
    ["status"],  # status: stored, skipped, failed
)

settlement_submissions_total = Counter(
    "settlement_submissions_total",
    "Total settlement submissions",
    ["status"],  # status: submitted, skipped, failed
)

# API counters
api_requests_total = Counter(
    "api_requests_total",
    "Total API requests",
    ["endpoint", "method", "status_code"],
)

# Histograms
whoop_api_duration_seconds = Histogram(
    "whoop_api_duration_seconds",
    "Duration of Whoop API calls",
    ["endpoint"],  # endpoint: token, sleep
)

api_response_duration_seconds = Histogram(
    "api_response_duration_seconds",
    "Duration of API responses",
    ["endpoint"],
)

webhook_duration_seconds = Histogram(
    "webhook_duration_seconds",
    "Duration of webhook handling including inline sync",
)


def create_metrics_app():
    """Create ASGI app for /metrics endpoint."""
    return make_asgi_app()
