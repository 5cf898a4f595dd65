"""Prometheus metrics for pipeline observability.

Counters and histograms at each pipeline stage.
Exposed via /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, make_asgi_app

# Pipeline counters
cached_records_total = Counter(
    "cached_records_total",
    "Total records appended to the upload queue",
    ["stream", "action"],  # action: Added, Deleted
)

rejected_samples_total = Counter(
    "rejected_samples_total",
    "Total samples dropped before reaching the queue",
    ["stream", "reason"],  # reason: source_not_allowed, serialization_error
)

batch_failures_total = Counter(
    "batch_failures_total",
    "Total cache batch failures by pipeline stage",
    ["stream", "stage"],  # stage: observe, fetch, append, anchor, statistics
)

# API counters
api_requests_total = Counter(
    "api_requests_total",
    "Total API requests",
    ["endpoint", "method", "status_code"],
)

# Histograms
provider_query_duration_seconds = Histogram(
    "provider_query_duration_seconds",
    "Duration of anchored queries against the health data provider",
    ["stream"],
)

batch_duration_seconds = Histogram(
    "batch_duration_seconds",
    "Duration of a full fetch-transform-append cache batch",
    ["stream"],
)

api_response_duration_seconds = Histogram(
    "api_response_duration_seconds",
    "Duration of API responses",
    ["endpoint"],
)


def create_metrics_app():
    """Create ASGI app for /metrics endpoint."""
    return make_asgi_app()
